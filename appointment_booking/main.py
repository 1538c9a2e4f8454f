import uvicorn

from appointment_booking.config import get_settings
from appointment_booking.logging_config import configure_logging


def main():
    """Run the FastAPI application with uvicorn server."""
    configure_logging(get_settings().log_level)
    uvicorn.run("appointment_booking.app:app", host="0.0.0.0", port=8000, reload=True)


if __name__ == "__main__":
    main()
