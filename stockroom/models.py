from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class User(Base):
    """
    Login identity plus the eBay OAuth slots written by the credential flow.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    marketplace_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    marketplace_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    marketplace_token_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    products: Mapped[list["Product"]] = relationship(back_populates="owner")


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        CheckConstraint(
            "condition IN ('new', 'open_box', 'used_like_new', 'used_good', 'used_fair')",
            name="ck_products_condition",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    condition: Mapped[str] = mapped_column(Text, nullable=False, default="used_good")
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    brand: Mapped[str | None] = mapped_column(Text, nullable=True)

    purchase_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    sold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Analysis.to_stored(): {"marketAnalysis": {...}, "marketplaceData": {...}}, either key optional
    analysis: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    # Stub listing (no real marketplace interop)
    listing_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    listing_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    listing_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    listing_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    listing_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner: Mapped[User] = relationship(back_populates="products")
