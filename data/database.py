"""
Database Module for the Tweet Curator Application

This module handles all database connections and operations for the Tweet
Curator application. It provides the SQL Server backed store for scraped items,
the publish queue and the runtime configuration document.
"""

import json
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable, Tuple, Sequence

import pyodbc
import pandas as pd

from config import settings
from data.models import ItemStatus, MediaItem, QueueItem, ScrapedItem
from utils.exceptions import QueryError
from utils.exceptions import ConnectionError as DatabaseConnectionError
from utils.helpers import days_ago
from utils.logger import get_logger

logger = get_logger(__name__)

ITEM_COLUMNS = """
    [Scraped_Item_ID], [Post_ID], [Author_Username], [Author_Name], [Author_Avatar],
    [Original_Content], [Processed_Content], [Original_URL], [Relevance_Score],
    [AI_Summary], [AI_Model], [Rejection_Reason], [Approval_Reason], [Status],
    [Media], [Is_Breaking_News], [Scraped_At]
"""


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _status_values(statuses: Iterable[ItemStatus]) -> List[str]:
    return [ItemStatus(s).value for s in statuses]


def row_to_item(row: Dict[str, Any]) -> ScrapedItem:
    """Convert a result row of the scraped items table to a ScrapedItem."""
    media = []
    if row.get('Media'):
        try:
            media = [MediaItem.from_dict(m) for m in json.loads(row['Media'])]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Ignoring malformed media for item {row.get('Scraped_Item_ID')}: {e}")

    return ScrapedItem(
        id=row['Scraped_Item_ID'],
        post_id=row['Post_ID'],
        author_username=row['Author_Username'],
        author_name=row.get('Author_Name') or row['Author_Username'],
        author_avatar=row.get('Author_Avatar'),
        original_content=row['Original_Content'],
        processed_content=row.get('Processed_Content') or row['Original_Content'],
        original_url=row.get('Original_URL') or f"https://x.com/{row['Author_Username']}/status/{row['Post_ID']}",
        relevance_score=row.get('Relevance_Score') or 0,
        ai_summary=row.get('AI_Summary'),
        ai_model=row.get('AI_Model'),
        rejection_reason=row.get('Rejection_Reason'),
        approval_reason=row.get('Approval_Reason'),
        status=ItemStatus(row['Status']),
        media=media,
        is_breaking_news=bool(row.get('Is_Breaking_News')),
        scraped_at=row.get('Scraped_At'),
    )


class DatabaseConnection:
    """Database connection manager and store for the Tweet Curator application."""

    def __init__(self, connection_string: Optional[str] = None):
        """Initialize the database connection."""
        self.conn = None
        self.connection_string = connection_string
        pyodbc.pooling = False

    def connect(self) -> bool:
        """
        Establish a connection to the database.

        Returns:
            bool: True if connection was successful, False otherwise.

        Raises:
            DatabaseConnectionError: Propagated unchanged when raised by the driver layer.
        """
        try:
            self.conn = pyodbc.connect(self.connection_string or settings.DB_CONNECTION_STRING)
            self.conn.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            logger.info("Successfully connected to database")
            return True
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            self.conn = None
            return False

    def close(self) -> None:
        """Close the database connection."""
        try:
            if self.conn:
                self.conn.close()
                logger.info("Database connection closed")
        except Exception as e:
            logger.error(f"Error closing database connection: {e}")
        finally:
            self.conn = None

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except Exception as e:
            logger.debug(f"Rollback failed: {e}")

    def execute_query(self, query: str, params: Optional[tuple] = None,
                      raise_on_error: bool = False) -> Optional[List[Dict]]:
        """
        Execute a SQL query and return the results.

        Args:
            query: The SQL query to execute.
            params: Query parameters (optional).
            raise_on_error: Raise QueryError instead of returning None on failure.

        Returns:
            Optional[List[Dict]]: Query results as a list of dictionaries (empty for
            statements without a result set), or None if an error occurred.
        """
        if not self.conn and not self.connect():
            if raise_on_error:
                raise DatabaseConnectionError("Database connection unavailable")
            return None

        try:
            cursor = self.conn.cursor()
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)

            results = []
            if cursor.description:
                columns = [column[0] for column in cursor.description]
                results = [dict(zip(columns, row)) for row in cursor.fetchall()]
            if not query.lstrip().upper().startswith("SELECT"):
                self.conn.commit()
            return results

        except QueryError:
            raise
        except Exception as e:
            logger.error(f"Error executing query: {e}")
            self._rollback()
            if raise_on_error:
                raise QueryError(str(e)) from e
            return None

    # =========================================================================
    # Scraped items
    # =========================================================================

    def find_item_by_post_id(self, post_id: str) -> Optional[ScrapedItem]:
        rows = self.execute_query(
            f"SELECT TOP 1 {ITEM_COLUMNS} FROM [dbo].[tbl_Scraped_Items] WHERE [Post_ID] = ?",
            (post_id,), raise_on_error=True
        )
        return row_to_item(rows[0]) if rows else None

    def get_item(self, item_id: int) -> Optional[ScrapedItem]:
        rows = self.execute_query(
            f"SELECT {ITEM_COLUMNS} FROM [dbo].[tbl_Scraped_Items] WHERE [Scraped_Item_ID] = ?",
            (item_id,)
        )
        return row_to_item(rows[0]) if rows else None

    def list_items(self, statuses: Optional[Iterable[ItemStatus]] = None) -> List[ScrapedItem]:
        query = f"SELECT {ITEM_COLUMNS} FROM [dbo].[tbl_Scraped_Items]"
        params = None
        if statuses is not None:
            values = _status_values(statuses)
            if not values:
                return []
            query += f" WHERE [Status] IN ({_placeholders(values)})"
            params = tuple(values)
        query += " ORDER BY [Scraped_At] DESC"
        rows = self.execute_query(query, params)
        return [row_to_item(r) for r in rows or []]

    def insert_item(self, item: ScrapedItem) -> ScrapedItem:
        """
        Insert a scraped item.

        Args:
            item: The item to insert; ``id`` and ``scraped_at`` are ignored.

        Returns:
            ScrapedItem: The item with the database id and timestamp set.

        Raises:
            QueryError: If the insert failed.
        """
        query = """
        INSERT INTO [dbo].[tbl_Scraped_Items] (
            [Post_ID], [Author_Username], [Author_Name], [Author_Avatar],
            [Original_Content], [Processed_Content], [Original_URL], [Relevance_Score],
            [AI_Summary], [AI_Model], [Rejection_Reason], [Status], [Media], [Is_Breaking_News]
        )
        OUTPUT INSERTED.[Scraped_Item_ID], INSERTED.[Scraped_At]
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        media_json = json.dumps([m.to_dict() for m in item.media]) if item.media else None
        params = (
            item.post_id, item.author_username, item.author_name, item.author_avatar,
            item.original_content, item.processed_content, item.original_url, item.relevance_score,
            item.ai_summary, item.ai_model, item.rejection_reason, ItemStatus(item.status).value,
            media_json, 1 if item.is_breaking_news else 0,
        )
        rows = self.execute_query(query, params, raise_on_error=True)
        if not rows:
            raise QueryError(f"Insert returned no id for post {item.post_id}")
        item.id = rows[0]['Scraped_Item_ID']
        item.scraped_at = rows[0].get('Scraped_At')
        logger.debug(f"Inserted scraped item {item.id} for post {item.post_id}")
        return item

    def update_item_status(self, item_id: int, status: ItemStatus, reason: Optional[str] = None) -> bool:
        status = ItemStatus(status)
        if reason and status == ItemStatus.REJECTED:
            query = "UPDATE [dbo].[tbl_Scraped_Items] SET [Status] = ?, [Rejection_Reason] = ? WHERE [Scraped_Item_ID] = ?"
            params = (status.value, reason, item_id)
        elif reason and status == ItemStatus.APPROVED:
            query = "UPDATE [dbo].[tbl_Scraped_Items] SET [Status] = ?, [Approval_Reason] = ? WHERE [Scraped_Item_ID] = ?"
            params = (status.value, reason, item_id)
        else:
            query = "UPDATE [dbo].[tbl_Scraped_Items] SET [Status] = ? WHERE [Scraped_Item_ID] = ?"
            params = (status.value, item_id)
        return self.execute_query(query, params) is not None

    def update_item_content(self, item_id: int, content: str) -> bool:
        return self.execute_query(
            "UPDATE [dbo].[tbl_Scraped_Items] SET [Processed_Content] = ? WHERE [Scraped_Item_ID] = ?",
            (content, item_id)
        ) is not None

    def delete_items(self, item_ids: Sequence[int]) -> int:
        if not item_ids:
            return 0
        ids = list(item_ids)
        self.delete_queue_items_for(ids)
        rows = self.execute_query(
            f"DELETE FROM [dbo].[tbl_Scraped_Items] OUTPUT DELETED.[Scraped_Item_ID] "
            f"WHERE [Scraped_Item_ID] IN ({_placeholders(ids)})",
            tuple(ids)
        )
        return len(rows or [])

    def delete_older_than(self, statuses: Iterable[ItemStatus], days: float) -> int:
        values = _status_values(statuses)
        if not values:
            return 0
        cutoff = days_ago(days).replace(tzinfo=None)
        rows = self.execute_query(
            f"DELETE FROM [dbo].[tbl_Scraped_Items] OUTPUT DELETED.[Scraped_Item_ID] "
            f"WHERE [Status] IN ({_placeholders(values)}) AND [Scraped_At] < ?",
            tuple(values) + (cutoff,)
        )
        if rows is None:
            raise QueryError("Retention cleanup failed")
        return len(rows)

    def get_content_by_status(self, statuses: Iterable[ItemStatus],
                              since_days: Optional[float] = None) -> List[str]:
        values = _status_values(statuses)
        if not values:
            return []
        query = (
            "SELECT DISTINCT COALESCE([Processed_Content], [Original_Content]) AS [Content] "
            f"FROM [dbo].[tbl_Scraped_Items] WHERE [Status] IN ({_placeholders(values)})"
        )
        params = tuple(values)
        if since_days is not None:
            query += " AND [Scraped_At] >= ?"
            params += (days_ago(since_days).replace(tzinfo=None),)
        rows = self.execute_query(query, params)
        if rows is None:
            logger.error(f"Error fetching content for statuses {values}")
            return []
        return [r['Content'] for r in rows if r.get('Content')]

    # =========================================================================
    # Publish queue
    # =========================================================================

    def _row_to_queue_item(self, row: Dict[str, Any]) -> QueueItem:
        item = row_to_item(row) if row.get('Post_ID') else None
        return QueueItem(
            id=row['Queue_ID'],
            scraped_item_id=row['Queue_Scraped_Item_ID'],
            custom_text=row['Custom_Text'],
            position=row['Position'],
            scheduled_at=row.get('Scheduled_At'),
            created_at=row.get('Created_At'),
            item=item,
        )

    def _select_queue(self, where: str = "", params: Optional[tuple] = None) -> List[QueueItem]:
        query = f"""
        SELECT q.[Queue_ID], q.[Scraped_Item_ID] AS [Queue_Scraped_Item_ID], q.[Custom_Text],
               q.[Position], q.[Scheduled_At], q.[Created_At], {ITEM_COLUMNS.replace('[', 's.[')}
        FROM [dbo].[tbl_Publish_Queue] q
        LEFT JOIN [dbo].[tbl_Scraped_Items] s ON s.[Scraped_Item_ID] = q.[Scraped_Item_ID]
        {where}
        ORDER BY q.[Position] ASC, q.[Queue_ID] ASC
        """
        rows = self.execute_query(query, params)
        return [self._row_to_queue_item(r) for r in rows or []]

    def get_queue(self) -> List[QueueItem]:
        return self._select_queue()

    def get_queue_item(self, queue_id: int) -> Optional[QueueItem]:
        items = self._select_queue("WHERE q.[Queue_ID] = ?", (queue_id,))
        return items[0] if items else None

    def count_queue(self) -> int:
        rows = self.execute_query("SELECT COUNT(*) AS [Total] FROM [dbo].[tbl_Publish_Queue]",
                                  raise_on_error=True)
        return rows[0]['Total'] if rows else 0

    def shift_queue_positions(self, offset: int = 1) -> bool:
        # Single statement so no two rows ever share a position mid-shift
        return self.execute_query(
            "UPDATE [dbo].[tbl_Publish_Queue] SET [Position] = [Position] + ?",
            (offset,)
        ) is not None

    def insert_queue_item(self, queue_item: QueueItem) -> QueueItem:
        rows = self.execute_query(
            """
            INSERT INTO [dbo].[tbl_Publish_Queue] ([Scraped_Item_ID], [Custom_Text], [Position], [Scheduled_At])
            OUTPUT INSERTED.[Queue_ID], INSERTED.[Created_At]
            VALUES (?, ?, ?, ?)
            """,
            (queue_item.scraped_item_id, queue_item.custom_text, queue_item.position, queue_item.scheduled_at),
            raise_on_error=True
        )
        if not rows:
            raise QueryError(f"Queue insert returned no id for item {queue_item.scraped_item_id}")
        queue_item.id = rows[0]['Queue_ID']
        queue_item.created_at = rows[0].get('Created_At')
        return queue_item

    def update_queue_positions(self, positions: Iterable[Tuple[int, int]]) -> bool:
        pairs = [(position, queue_id) for queue_id, position in positions]
        if not pairs:
            return True
        if not self.conn and not self.connect():
            return False
        try:
            cursor = self.conn.cursor()
            cursor.executemany(
                "UPDATE [dbo].[tbl_Publish_Queue] SET [Position] = ? WHERE [Queue_ID] = ?",
                pairs
            )
            self.conn.commit()
            return True
        except Exception as e:
            logger.error(f"Error updating queue positions: {e}")
            self._rollback()
            return False

    def update_queue_item(self, queue_id: int, custom_text: Optional[str] = None,
                          scheduled_at: Optional[datetime] = None, clear_schedule: bool = False) -> bool:
        sets, params = [], []
        if custom_text is not None:
            sets.append("[Custom_Text] = ?")
            params.append(custom_text)
        if scheduled_at is not None or clear_schedule:
            sets.append("[Scheduled_At] = ?")
            params.append(None if clear_schedule else scheduled_at)
        if not sets:
            return True
        params.append(queue_id)
        return self.execute_query(
            f"UPDATE [dbo].[tbl_Publish_Queue] SET {', '.join(sets)} WHERE [Queue_ID] = ?",
            tuple(params)
        ) is not None

    def delete_queue_item(self, queue_id: int) -> bool:
        return self.execute_query(
            "DELETE FROM [dbo].[tbl_Publish_Queue] WHERE [Queue_ID] = ?", (queue_id,)
        ) is not None

    def delete_queue_items_for(self, item_ids: Sequence[int]) -> int:
        ids = list(item_ids)
        if not ids:
            return 0
        rows = self.execute_query(
            f"DELETE FROM [dbo].[tbl_Publish_Queue] OUTPUT DELETED.[Queue_ID] "
            f"WHERE [Scraped_Item_ID] IN ({_placeholders(ids)})",
            tuple(ids)
        )
        return len(rows or [])

    # =========================================================================
    # Runtime configuration
    # =========================================================================

    def load_config(self, key: str = "app_config") -> Optional[Dict[str, Any]]:
        rows = self.execute_query(
            "SELECT [Setting_Value] FROM [dbo].[tbl_App_Settings] WHERE [Setting_Key] = ?", (key,)
        )
        if not rows:
            return None
        try:
            return json.loads(rows[0]['Setting_Value'])
        except (TypeError, ValueError) as e:
            logger.error(f"Stored configuration '{key}' is not valid JSON: {e}")
            return None

    def save_config(self, config: Dict[str, Any], key: str = "app_config") -> bool:
        query = """
        MERGE [dbo].[tbl_App_Settings] AS target
        USING (SELECT ? AS [Setting_Key], ? AS [Setting_Value]) AS source
        ON target.[Setting_Key] = source.[Setting_Key]
        WHEN MATCHED THEN
            UPDATE SET [Setting_Value] = source.[Setting_Value], [Updated_At] = SYSUTCDATETIME()
        WHEN NOT MATCHED THEN
            INSERT ([Setting_Key], [Setting_Value], [Updated_At])
            VALUES (source.[Setting_Key], source.[Setting_Value], SYSUTCDATETIME());
        """
        ok = self.execute_query(query, (key, json.dumps(config))) is not None
        if not ok:
            logger.error("Error saving configuration")
        return ok

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_rejection_report(self, limit: int = 50) -> Optional[pd.DataFrame]:
        """
        Retrieve recently rejected items with the reasons given, for prompt tuning.

        Args:
            limit: Maximum number of rows.

        Returns:
            Optional[pd.DataFrame]: One row per rejected item, or None if an error occurred.
        """
        query = """
        SELECT TOP (?) [Author_Username], [Relevance_Score], [Rejection_Reason],
               [Approval_Reason], [AI_Model], [Original_Content], [Scraped_At]
        FROM [dbo].[tbl_Scraped_Items]
        WHERE [Status] = 'rejected'
        ORDER BY [Scraped_At] DESC
        """
        try:
            if not self.conn and not self.connect():
                return None
            return pd.read_sql(query, self.conn, params=[limit])
        except Exception as e:
            logger.error(f"Error retrieving rejection report: {e}")
            return None


# Create a default database instance for use throughout the application
db = DatabaseConnection()
