"""로그 설정 모듈.

릴레이 서버(app.py)와 음성 클라이언트(client.py)가 같은 방식으로 로깅을 구성합니다.
콘솔 출력과 날짜별 파일(logs/<prefix>_YYYYMMDD.log)에 동시에 기록합니다.
"""

import glob
import logging
import os
from datetime import datetime, timedelta

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def cleanup_old_logs(log_dir: str, retention_days: int, prefix: str) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)
        prefix: 로그 파일 접두사 (server, client)

    Returns:
        삭제된 파일 수
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, f"{prefix}_*.log")):
        try:
            filename = os.path.basename(log_file)
            date_str = filename[len(prefix) + 1:-len(".log")]
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


def configure_logging(prefix: str, level: str = "INFO", log_dir: str = "logs") -> str:
    """콘솔 + 날짜별 파일 로깅을 설정합니다.

    Args:
        prefix: 로그 파일 접두사
        level: 로그 레벨 이름
        log_dir: 로그 디렉토리

    Returns:
        str: 로그 파일 경로
    """
    os.makedirs(log_dir, exist_ok=True)
    log_filename = os.path.join(log_dir, f"{prefix}_{datetime.now().strftime('%Y%m%d')}.log")

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),  # 콘솔 출력
            logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
        ]
    )
    return log_filename
