from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Storefront"
    ENVIRONMENT: str = "development"

    # Logging; unset means derived from ENVIRONMENT
    LOG_LEVEL: Optional[str] = None
    LOG_FORMAT: Optional[str] = None

    # AWS Settings
    AWS_REGION: str = "ap-south-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    DYNAMODB_ENDPOINT: Optional[str] = None

    # DynamoDB Tables
    DYNAMODB_ORDERS_TABLE: str = "storefront-orders-dev"
    DYNAMODB_INVENTORY_TABLE: str = "storefront-inventory-dev"
    DYNAMODB_COUPONS_TABLE: str = "storefront-coupons-dev"
    DYNAMODB_COUPON_USAGES_TABLE: str = "storefront-coupon-usages-dev"
    DYNAMODB_RETURNS_TABLE: str = "storefront-returns-dev"
    DYNAMODB_BUYBACKS_TABLE: str = "storefront-buybacks-dev"
    DYNAMODB_GIFT_CARDS_TABLE: str = "storefront-gift-cards-dev"
    DYNAMODB_PRODUCTS_TABLE: str = "storefront-products-dev"
    DYNAMODB_CARTS_TABLE: str = "storefront-carts-dev"
    DYNAMODB_USERS_TABLE: str = "storefront-users-dev"
    DYNAMODB_LOYALTY_AUDITS_TABLE: str = "storefront-loyalty-audits-dev"
    DYNAMODB_SECRETS_TABLE: str = "storefront-secrets-dev"
    DYNAMODB_COUNTERS_TABLE: str = "storefront-counters-dev"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # JWT
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Payment gateway (credentials live in the secrets table)
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com"
    PAYMENT_SECRETS_KEY: str = "RazorPay"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0

    # Courier
    DELHIVERY_BASE_URL: str = "https://track.delhivery.com"
    COURIER_SECRETS_KEY: str = "DELHIVERY"
    COURIER_TIMEOUT_SECONDS: float = 15.0
    DELIVERY_WEBHOOK_TOKEN: str

    # Checkout
    DEFAULT_CURRENCY: str = "INR"
    DEFAULT_COUNTRY: str = "IN"
    VERIFY_LOYALTY_BALANCE: bool = False

settings = Settings()
