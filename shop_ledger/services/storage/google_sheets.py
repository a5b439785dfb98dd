"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. The shop owner can view and export their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (a small shop is fine)
- No transactions (the ledger service issues one write at a time)
- Limited query capabilities (all filtering happens in Python)

One worksheet per entity. Sale items are stored as a JSON column.
Rows are returned as raw records; a broken row surfaces as a skipped
record when the snapshot is built, it never breaks a listing.
"""

import json
from typing import Callable, Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shop_ledger.config import get_settings
from shop_ledger.log import get_logger
from shop_ledger.models.ledger import Product, ProductCategory, Transaction
from shop_ledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    Record,
    StorageError,
)


logger = get_logger(__name__)

# Column mappings for each worksheet
TRANSACTION_COLUMNS = [
    "id",
    "kind",
    "amount",
    "timestamp",
    "description",
    "category",
    "items_json",
]

PRODUCT_COLUMNS = [
    "id",
    "name",
    "price",
    "is_visible",
    "sort_order",
    "category_id",
]

CATEGORY_COLUMNS = [
    "id",
    "name",
]

# Writes are retried on transient failures, never on a lookup miss
write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((NotFoundError, DuplicateError)),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
            logger.info("worksheet_created", title=title)
        return sheet

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.transactions_sheet_name, TRANSACTION_COLUMNS)

    def get_products_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.products_sheet_name, PRODUCT_COLUMNS)

    def get_categories_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.categories_sheet_name, CATEGORY_COLUMNS)


# =============================================================================
# ROW MAPPING
# =============================================================================

def transaction_to_row(transaction: Transaction) -> list:
    """Convert a Transaction to a spreadsheet row."""
    items = [item.model_dump(mode="json") for item in transaction.items]
    return [
        transaction.id,
        transaction.kind.value,
        str(transaction.amount),
        transaction.timestamp.isoformat(),
        transaction.description or "",
        transaction.category.value if transaction.category else "",
        json.dumps(items, ensure_ascii=False) if items else "",
    ]


def product_to_row(product: Product) -> list:
    """Convert a Product to a spreadsheet row."""
    return [
        product.id,
        product.name,
        str(product.price),
        str(product.is_visible),
        str(product.sort_order),
        product.category_id or "",
    ]


def category_to_row(category: ProductCategory) -> list:
    """Convert a ProductCategory to a spreadsheet row."""
    return [category.id, category.name]


def row_to_record(row: list, columns: list[str]) -> Record:
    """Zip a row with its header; empty cells become None."""
    record: Record = {}
    for index, column in enumerate(columns):
        value = row[index] if index < len(row) else ""
        record[column] = value if value != "" else None
    return record


def row_to_transaction_record(row: list) -> Record:
    """
    Convert a transactions row to a raw record.

    Unparseable item JSON is passed through as-is so that validation
    rejects (and counts) the record.
    """
    record = row_to_record(row, TRANSACTION_COLUMNS)
    items_json = record.pop("items_json")
    if items_json:
        try:
            record["items"] = json.loads(items_json)
        except json.JSONDecodeError:
            record["items"] = items_json
    return record


def row_to_product_record(row: list) -> Record:
    return row_to_record(row, PRODUCT_COLUMNS)


def row_to_category_record(row: list) -> Record:
    return row_to_record(row, CATEGORY_COLUMNS)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Records are stored as rows, one worksheet per entity, the id in
    column A.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _find_row(sheet: gspread.Worksheet, record_id: str) -> Optional[int]:
        """1-based row number holding `record_id`, skipping the header."""
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if row and row[0] == record_id:
                return idx
        return None

    @staticmethod
    def _list(sheet: gspread.Worksheet, mapper: Callable[[list], Record]) -> list[Record]:
        all_rows = sheet.get_all_values()[1:]  # Skip header
        return [mapper(row) for row in all_rows if row and row[0]]

    def _insert(self, sheet: gspread.Worksheet, record_id: str, row: list, entity: str) -> bool:
        if self._find_row(sheet, record_id) is not None:
            raise DuplicateError(f"{entity} already exists: {record_id}")
        sheet.append_row(row, value_input_option="RAW")
        return True

    def _replace(self, sheet: gspread.Worksheet, record_id: str, row: list, entity: str) -> bool:
        idx = self._find_row(sheet, record_id)
        if idx is None:
            raise NotFoundError(f"{entity} not found: {record_id}")
        sheet.update(range_name=f"A{idx}", values=[row], value_input_option="RAW")
        return True

    def _delete(self, sheet: gspread.Worksheet, record_id: str) -> bool:
        idx = self._find_row(sheet, record_id)
        if idx is None:
            return False
        sheet.delete_rows(idx)
        return True

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def list_transactions(self) -> list[Record]:
        try:
            return self._list(self._client.get_transactions_sheet(), row_to_transaction_record)
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

    @write_retry
    async def save_transaction(self, transaction: Transaction) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            return self._insert(sheet, transaction.id, transaction_to_row(transaction), "Transaction")
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    @write_retry
    async def update_transaction(self, transaction: Transaction) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            return self._replace(sheet, transaction.id, transaction_to_row(transaction), "Transaction")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_id: str) -> bool:
        try:
            return self._delete(self._client.get_transactions_sheet(), transaction_id)
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    async def list_products(self) -> list[Record]:
        try:
            return self._list(self._client.get_products_sheet(), row_to_product_record)
        except Exception as e:
            raise StorageError(f"Failed to list products: {e}")

    @write_retry
    async def save_product(self, product: Product) -> bool:
        try:
            sheet = self._client.get_products_sheet()
            return self._insert(sheet, product.id, product_to_row(product), "Product")
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save product: {e}")

    @write_retry
    async def upsert_products(self, products: list[Product]) -> bool:
        try:
            sheet = self._client.get_products_sheet()
            new_rows = []
            for product in products:
                row = product_to_row(product)
                idx = self._find_row(sheet, product.id)
                if idx is None:
                    new_rows.append(row)
                else:
                    sheet.update(range_name=f"A{idx}", values=[row], value_input_option="RAW")
            if new_rows:
                sheet.append_rows(new_rows, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to upsert products: {e}")

    async def delete_product(self, product_id: str) -> bool:
        try:
            return self._delete(self._client.get_products_sheet(), product_id)
        except Exception as e:
            raise StorageError(f"Failed to delete product: {e}")

    # -------------------------------------------------------------------------
    # Product categories
    # -------------------------------------------------------------------------

    async def list_product_categories(self) -> list[Record]:
        try:
            return self._list(self._client.get_categories_sheet(), row_to_category_record)
        except Exception as e:
            raise StorageError(f"Failed to list product categories: {e}")

    @write_retry
    async def save_product_category(self, category: ProductCategory) -> bool:
        try:
            sheet = self._client.get_categories_sheet()
            return self._insert(sheet, category.id, category_to_row(category), "Product category")
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save product category: {e}")

    @write_retry
    async def update_product_category(self, category: ProductCategory) -> bool:
        try:
            sheet = self._client.get_categories_sheet()
            return self._replace(sheet, category.id, category_to_row(category), "Product category")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update product category: {e}")

    async def delete_product_category(self, category_id: str) -> bool:
        try:
            return self._delete(self._client.get_categories_sheet(), category_id)
        except Exception as e:
            raise StorageError(f"Failed to delete product category: {e}")
