import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List


def _get_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    database_url: str
    db_schema: str = "checkout"
    db_pool: str = "null"  # null | queue
    create_tables: bool = False

    tax_rate: Decimal = Decimal("0.10")
    shipping_flat_fee: Decimal = Decimal("50.00")
    order_number_strategy: str = "timestamp"  # timestamp | random
    default_payment_method: str = "cod"

    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set")

        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=database_url,
            db_schema=os.getenv("DB_SCHEMA", "checkout"),
            db_pool=os.getenv("DB_POOL", "null").strip().lower(),
            create_tables=_get_bool("CREATE_TABLES"),
            tax_rate=Decimal(os.getenv("TAX_RATE", "0.10")),
            shipping_flat_fee=Decimal(os.getenv("SHIPPING_FLAT_FEE", "50.00")),
            order_number_strategy=os.getenv("ORDER_NUMBER_STRATEGY", "timestamp").strip().lower(),
            default_payment_method=os.getenv("DEFAULT_PAYMENT_METHOD", "cod"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
