"""
PhotoDb - MySQL-backed durable record of each photo's processing state.

Every mutation is a single-row conditional UPDATE keyed by photo id, so
concurrent workers never need multi-row transactions.
"""

import logging
from contextlib import contextmanager
from typing import Optional, Tuple

import mysql.connector
from mysql.connector import errorcode, pooling
from mysql.connector.constants import ClientFlag
from retrying import retry

from .config import DbConfig
from .photo import Photo, PhotoStatus, UploadMetadata, truncate_error


PHOTO_COLUMNS = (
    'id', 'album_id', 'key_original', 'key_thumb', 'status', 'last_error',
    'width', 'height', 'mime_type', 'size_bytes', 'checksum', 'caption',
    'created_at', 'updated_at',
)

TABLES = {
    'photos': (
        "CREATE TABLE IF NOT EXISTS `photos` ("
        "  id VARCHAR(64) NOT NULL PRIMARY KEY,"
        "  album_id VARCHAR(64) NOT NULL,"
        "  key_original VARCHAR(512) NOT NULL,"
        "  key_thumb VARCHAR(512) NULL,"
        "  status ENUM('pending', 'processed', 'error') NOT NULL DEFAULT 'pending',"
        "  last_error VARCHAR(1000) NULL,"
        "  width INT NULL,"
        "  height INT NULL,"
        "  mime_type VARCHAR(100) NULL,"
        "  size_bytes BIGINT NULL,"
        "  checksum VARCHAR(128) NULL,"
        "  caption VARCHAR(2000) NULL,"
        "  created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,"
        "  updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,"
        "  UNIQUE KEY uq_photos_album_key (album_id, key_original),"
        "  KEY ix_photos_album_status (album_id, status)"
        ") ENGINE=InnoDB"
    )
}


class PhotoDb:
    """
    Photo record store.

    The connection pool is created lazily on first use. The ``albums``
    table belongs to the album CRUD layer; it is only read here.
    """

    def __init__(self, config: DbConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.connection_pool = None

    def initialize_pool(self):
        """Initialize the connection pool if it hasn't been created yet."""
        if not self.connection_pool:
            self.logger.debug("Initializing connection pool...")
            try:
                self.connection_pool = pooling.MySQLConnectionPool(
                    pool_name="photo_db_pool",
                    pool_size=self.config.pool_size,
                    user=self.config.user,
                    password=self.config.password,
                    host=self.config.host,
                    port=self.config.port,
                    database=self.config.database,
                    # UPDATE rowcount reports matched rows, not changed rows
                    client_flags=[ClientFlag.FOUND_ROWS],
                )
            except mysql.connector.Error as err:
                self.logger.error(f"Failed to initialize connection pool: {err}")
                raise

    @retry(retry_on_exception=lambda e: isinstance(e, mysql.connector.Error),
           stop_max_attempt_number=3, wait_exponential_multiplier=1000)
    def get_cursor(self):
        """Get a connection from the pool and create a dictionary cursor."""
        self.initialize_pool()
        connection = self.connection_pool.get_connection()
        return connection.cursor(dictionary=True, buffered=True), connection

    @contextmanager
    def cursor(self):
        """Yield ``(cursor, connection)``; both are released on exit."""
        cursor, connection = None, None
        try:
            cursor, connection = self.get_cursor()
            yield cursor, connection
        finally:
            if cursor:
                cursor.close()
            if connection:
                try:
                    connection.close()
                except mysql.connector.Error as e:
                    self.logger.warning(f"Error returning connection to pool: {e}")

    def create_tables(self):
        """Create the photos table if it does not exist."""
        with self.cursor() as (cursor, connection):
            for table_name, table_description in TABLES.items():
                try:
                    self.logger.info(f"Creating table {table_name}...")
                    cursor.execute(table_description)
                except mysql.connector.Error as err:
                    if err.errno != errorcode.ER_TABLE_EXISTS_ERROR:
                        raise
                    self.logger.info(f"Table {table_name} already exists.")
            connection.commit()

    def ping(self) -> None:
        with self.cursor() as (cursor, _):
            cursor.execute("SELECT 1")
            cursor.fetchall()

    # --- Reads ------------------------------------------------------------

    def album_exists(self, album_id: str) -> bool:
        with self.cursor() as (cursor, _):
            cursor.execute("SELECT 1 FROM albums WHERE id = %s LIMIT 1", (album_id,))
            return cursor.fetchone() is not None

    def get_photo(self, photo_id: str) -> Optional[Photo]:
        return self._fetch_one("WHERE id = %s", (photo_id,))

    def find_by_album_and_key(self, album_id: str, key_original: str) -> Optional[Photo]:
        return self._fetch_one("WHERE album_id = %s AND key_original = %s", (album_id, key_original))

    def _fetch_one(self, where_clause: str, params: tuple) -> Optional[Photo]:
        query = f"SELECT {', '.join(PHOTO_COLUMNS)} FROM photos {where_clause} LIMIT 1"
        with self.cursor() as (cursor, _):
            cursor.execute(query, params)
            row = cursor.fetchone()
        return Photo.from_row(row) if row else None

    # --- Writes -----------------------------------------------------------

    def create_photo(
        self,
        album_id: str,
        key_original: str,
        metadata: Optional[UploadMetadata] = None
    ) -> Tuple[Photo, bool]:
        """
        Insert a pending photo.

        Returns:
            ``(photo, created)``. When a concurrent insert for the same
            ``(album_id, key_original)`` won, the existing row is returned
            with ``created=False``.
        """
        photo = Photo.new(album_id, key_original, metadata)
        insert = (
            "INSERT INTO photos (id, album_id, key_original, status, width, height, "
            "mime_type, size_bytes, checksum, caption) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)"
        )
        params = (
            photo.id, photo.album_id, photo.key_original, PhotoStatus.PENDING,
            photo.width, photo.height, photo.mime_type, photo.size_bytes,
            photo.checksum, photo.caption,
        )
        try:
            with self.cursor() as (cursor, connection):
                cursor.execute(insert, params)
                connection.commit()
        except mysql.connector.IntegrityError as e:
            if e.errno != errorcode.ER_DUP_ENTRY:
                raise
            existing = self.find_by_album_and_key(album_id, key_original)
            if existing is None:
                raise
            self.logger.info(f"Photo for {key_original} already recorded as {existing.id}")
            return existing, False

        self.logger.info(f"Created photo {photo.id} for {key_original}")
        return self.get_photo(photo.id) or photo, True

    def mark_error(self, photo_id: str, message: str) -> bool:
        """
        Record a failure. A processed photo is never demoted.

        Returns:
            True if a row was updated
        """
        sql = (
            "UPDATE photos SET status = %s, last_error = %s "
            "WHERE id = %s AND status <> %s"
        )
        params = (PhotoStatus.ERROR, truncate_error(message), photo_id, PhotoStatus.PROCESSED)
        return self._update(sql, params)

    def mark_processed(
        self,
        photo_id: str,
        key_original: str,
        key_thumb: str,
        width: Optional[int],
        height: Optional[int]
    ) -> bool:
        """
        Record a successful derivative, conditional on the original key
        still being the one that was processed.

        Returns:
            True if the row matched
        """
        sql = (
            "UPDATE photos SET key_thumb = %s, width = %s, height = %s, "
            "status = %s, last_error = NULL "
            "WHERE id = %s AND key_original = %s"
        )
        params = (key_thumb, width, height, PhotoStatus.PROCESSED, photo_id, key_original)
        return self._update(sql, params)

    def _update(self, sql: str, params: tuple) -> bool:
        with self.cursor() as (cursor, connection):
            self.logger.debug(f"SQL: {sql} {params}")
            cursor.execute(sql, params)
            connection.commit()
            return cursor.rowcount > 0
