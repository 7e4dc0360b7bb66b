import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./hall_bookings.db")

# MUST MATCH the token issuer
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "super-secret-hall-booking-key")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

DEFAULT_HALLS = (
    "A-191,A-192,A-193,A-194,A-195,A-205,A-206,A-207,A-208,"
    "Seminar Hall,Auditorium,Conference Room 1,Conference Room 2"
)
HALLS = [h.strip() for h in os.getenv("HALLS", DEFAULT_HALLS).split(",") if h.strip()]

# When set, the hall catalog is fetched from the facilities service instead of HALLS
FACILITIES_SERVICE_URL = os.getenv("FACILITIES_SERVICE_URL")

MAX_ATTENDANCE = int(os.getenv("MAX_ATTENDANCE", "300"))
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
