"""
Constants
Centralised service names, step labels and skip messages for the lab stack.
"""
SERVICE_XATU_CBT = "xatu-cbt"
SERVICE_CBT = "cbt"
SERVICE_CBT_API = "cbt-api"
SERVICE_LAB_BACKEND = "lab-backend"
SERVICE_LAB_FRONTEND = "lab-frontend"
SERVICE_CONFIGS = "configs"
SERVICE_ALL = "all-services"

TOTAL_STEPS = 7

MSG_UPSTREAM_PROTOS_FAILED = "skipped due to upstream failure: xatu-cbt proto generation failed"
MSG_UPSTREAM_XATU_CBT_FAILED = "skipped due to upstream failure: xatu-cbt build failed"
MSG_API_BUILD_FAILED = "skipped due to API build failure"
MSG_RESTART_FAILED = "skipped due to restart failure"
MSG_SERVICES_NOT_RUNNING = "services not running - skipped"
MSG_CANCELLED = "cancelled"

REPORT_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def cbt_service(network: str) -> str:
    return f"{SERVICE_CBT}-{network}"


def cbt_api_service(network: str) -> str:
    return f"{SERVICE_CBT_API}-{network}"
