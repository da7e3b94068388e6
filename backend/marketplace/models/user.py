from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.base import Base


class User(Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # brand / creator / admin
    role: Mapped[str] = mapped_column(
        String(20), default="creator", server_default="creator"
    )

    brand_profile = relationship(
        "BrandProfile", back_populates="user", uselist=False, lazy="selectin"
    )
    creator_profile = relationship(
        "CreatorProfile", back_populates="user", uselist=False, lazy="selectin"
    )


class BrandProfile(Base):
    __tablename__ = "brand_profiles"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)

    user = relationship("User", back_populates="brand_profile")


class CreatorProfile(Base):
    __tablename__ = "creator_profiles"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    user = relationship("User", back_populates="creator_profile")
