"""Downloading order PDFs to local storage and removing old ones."""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Union

import httpx
from sqlalchemy import Engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import Order
from .logger import Logger, new_logger

_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
_RATE_LIMIT_DELAY = 2.0


class PDFDownloadError(Exception):
    """Raised when a PDF cannot be fetched or stored."""


def _not_deleted(query):
    if "deleted_at" in Order.__table__.c:
        return query.where(Order.__table__.c.deleted_at.is_(None))
    return query


class PDFDownloader:
    """Fetches the PDFs of stored orders into ``save_path/pdfs/YYYY/MM``."""

    def __init__(
        self,
        engine: Engine,
        logger: Optional[Logger] = None,
        save_path: Union[str, os.PathLike] = ".",
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._engine = engine
        self._logger = logger or new_logger("info", "json")
        self._save_path = Path(save_path)
        self._client = client or httpx.Client(timeout=60.0)
        self._sleep = sleep

    def download_order_pdfs(self) -> None:
        """Download every order PDF not yet fetched and mark it downloaded."""
        try:
            with Session(self._engine, expire_on_commit=False) as session:
                query = _not_deleted(
                    select(Order).where(Order.pdf_link != "", Order.downloaded.is_(False))
                )
                orders = session.scalars(query).all()
                self._logger.info("Found orders to download", count=len(orders))

                for order in orders:
                    try:
                        self.download_pdf(order)
                    except PDFDownloadError as exc:
                        self._logger.error(
                            "Failed to download PDF", order_id=order.id, error=str(exc)
                        )
                        continue
                    order.downloaded = True
                    session.commit()
                    self._sleep(_RATE_LIMIT_DELAY)
        except SQLAlchemyError as exc:
            raise PDFDownloadError(f"failed to fetch orders: {exc}") from exc

    def download_pdf(self, order: Order) -> Path:
        """Fetch one order's PDF and record where it was stored."""
        now = datetime.now()
        dir_path = self._save_path / "pdfs" / f"{now.year}" / f"{now.month:02d}"
        try:
            dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PDFDownloadError(f"failed to create directory: {exc}") from exc

        date_part = order.order_date.strftime("%Y%m%d") if order.order_date else "00010101"
        full_path = dir_path / f"order_{order.id}_{date_part}.pdf"

        try:
            request = self._client.build_request(
                "GET", order.pdf_link, headers={"User-Agent": _USER_AGENT}
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol, TypeError) as exc:
            raise PDFDownloadError(f"failed to create request: {exc}") from exc

        try:
            response = self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise PDFDownloadError(f"failed to download: {exc}") from exc

        try:
            if response.status_code != 200:
                raise PDFDownloadError(
                    f"bad status: {response.status_code} {response.reason_phrase}"
                )
            size = 0
            try:
                with open(full_path, "wb") as handle:
                    for chunk in response.iter_bytes():
                        handle.write(chunk)
                        size += len(chunk)
            except (OSError, httpx.HTTPError) as exc:
                full_path.unlink(missing_ok=True)
                raise PDFDownloadError(f"failed to save file: {exc}") from exc
        finally:
            response.close()

        order.local_path = str(full_path)
        self._logger.info(
            "PDF downloaded successfully", order_id=order.id, size=size, path=str(full_path)
        )
        return full_path

    def cleanup_old_pdfs(self, days_to_keep: int) -> None:
        """Remove downloaded PDFs of orders created more than ``days_to_keep`` days ago."""
        cutoff = datetime.now() - timedelta(days=days_to_keep)
        try:
            with Session(self._engine, expire_on_commit=False) as session:
                query = _not_deleted(
                    select(Order).where(
                        Order.downloaded.is_(True),
                        Order.created_at < cutoff,
                        Order.local_path != "",
                    )
                )
                for order in session.scalars(query).all():
                    try:
                        os.remove(order.local_path)
                    except OSError as exc:
                        self._logger.warn(
                            "Failed to remove PDF", path=order.local_path, error=str(exc)
                        )
                        continue
                    order.local_path = ""
                    order.downloaded = False
                    session.commit()
                    self._logger.info("Removed old PDF", order_id=order.id)
        except SQLAlchemyError as exc:
            raise PDFDownloadError(str(exc)) from exc