import os

from dotenv import load_dotenv

load_dotenv()

# Environment
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", 60 * 24))
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
PORT = int(os.getenv("PORT", 8000))

# Catalog / checkout
PAGE_SIZE = 10
DEFAULT_IMAGE = "/images/sample.jpg"
FREE_SHIPPING_THRESHOLD = 100
SHIPPING_FEE = 10
TAX_RATE = 0.15
DEFAULT_PAYMENT_METHOD = "Stripe"
