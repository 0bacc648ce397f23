from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.session import Base
from app.models.common import UUIDMixin, RegistryDatesMixin

class Category(Base, UUIDMixin, RegistryDatesMixin):
    __tablename__ = "categories"
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    resources: Mapped[list["Resource"]] = relationship(back_populates="category")
