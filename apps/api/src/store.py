from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy import Engine, desc, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models import Product

logger = logging.getLogger("api.error")


class StoreError(Exception):
    pass


class RecordNotFoundError(StoreError):
    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"No record found for id {record_id!r}")


class DuplicateRecordError(StoreError):
    pass


class ProductStore:
    """SQLAlchemy-backed persistence for products.

    Built once per process around an engine; every operation runs in its own
    session and returns detached, fully loaded ``Product`` rows.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    def close(self) -> None:
        self.engine.dispose()

    def _session(self) -> Session:
        return self._sessions()

    def create(self, data: Mapping[str, Any]) -> Product:
        product = Product(**dict(data))
        with self._session() as session:
            session.add(product)
            self._commit(session, operation="create")
            session.refresh(product)
        return product

    def find_many(self, *, status: Optional[str] = None) -> list[Product]:
        stmt = select(Product).order_by(desc(Product.created_at), Product.id)
        if status is not None:
            stmt = stmt.where(Product.status == status)

        try:
            with self._session() as session:
                return list(session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            logger.error(
                "products_db_error",
                extra={"operation": "find_many", "error": str(exc)},
            )
            raise StoreError("Product query failed") from exc

    def find_by_id(self, product_id: str) -> Product:
        try:
            with self._session() as session:
                product = session.get(Product, product_id)
        except SQLAlchemyError as exc:
            logger.error(
                "products_db_error",
                extra={"operation": "find_by_id", "error": str(exc)},
            )
            raise StoreError("Product query failed") from exc

        if product is None:
            raise RecordNotFoundError(product_id)
        return product

    def update(self, product_id: str, data: Mapping[str, Any]) -> Product:
        with self._session() as session:
            product = self._get_for_write(session, product_id)
            for key, value in data.items():
                setattr(product, key, value)
            self._commit(session, operation="update")
            session.refresh(product)
        return product

    def delete(self, product_id: str) -> Product:
        with self._session() as session:
            product = self._get_for_write(session, product_id)
            session.delete(product)
            self._commit(session, operation="delete")
        return product

    def _get_for_write(self, session: Session, product_id: str) -> Product:
        try:
            product = session.get(Product, product_id)
        except SQLAlchemyError as exc:
            logger.error(
                "products_db_error",
                extra={"operation": "lookup", "error": str(exc)},
            )
            raise StoreError("Product query failed") from exc
        if product is None:
            raise RecordNotFoundError(product_id)
        return product

    def _commit(self, session: Session, *, operation: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            logger.warning(
                "products_db_integrity_error",
                extra={"operation": operation, "error": str(exc.orig)},
            )
            raise DuplicateRecordError("Unique constraint violated") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "products_db_error",
                extra={"operation": operation, "error": str(exc)},
            )
            raise StoreError(f"Product {operation} failed") from exc
