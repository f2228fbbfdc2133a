import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    VM_IP: str | None = os.getenv("VM_IP")
    DEFAULT_VM_IP: str | None = os.getenv("DEFAULT_VM_IP")
    UPSTREAM_ARTIFACT_PATH: str = os.getenv(
        "UPSTREAM_ARTIFACT_PATH", "infra-outputs.json"
    )
    TEST_LEVEL: str = os.getenv("TEST_LEVEL", "FULL").strip().upper()

    FRONTEND_PORT: int = int(os.getenv("FRONTEND_PORT", 3000))
    AUTH_API_PORT: int = int(os.getenv("AUTH_API_PORT", 8000))
    TODOS_API_PORT: int = int(os.getenv("TODOS_API_PORT", 8082))
    USERS_API_PORT: int = int(os.getenv("USERS_API_PORT", 8083))
    ZIPKIN_PORT: int = int(os.getenv("ZIPKIN_PORT", 9411))

    HEALTH_CHECK_TIMEOUT: float = float(os.getenv("HEALTH_CHECK_TIMEOUT", "60"))
    HEALTH_CHECK_INTERVAL: float = float(os.getenv("HEALTH_CHECK_INTERVAL", "3"))
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", 3))
    RUN_TIMEOUT: float = float(os.getenv("RUN_TIMEOUT", "900"))

    SSH_USER: str = os.getenv("SSH_USER", "ubuntu")
    SSH_KEY_PATH: str | None = os.getenv("SSH_KEY_PATH")
    SSH_PORT: int = int(os.getenv("SSH_PORT", 22))
    SSH_CONNECT_TIMEOUT: float = float(os.getenv("SSH_CONNECT_TIMEOUT", "10"))

    REPORT_PATH: str = os.getenv("REPORT_PATH", "reports/verification-report.json")
    LOGS_DIR: str = os.getenv("LOGS_DIR", "reports/logs")
    VERIFY_SUITE_PATH: str = os.getenv("VERIFY_SUITE_PATH", "verify.yml")


settings = Settings()
