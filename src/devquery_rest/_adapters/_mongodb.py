"""MongoDB adapter built on pymongo."""

from __future__ import annotations

import time
from typing import Any, Callable, Mapping

from bson.errors import BSONError
from pymongo import MongoClient
from pymongo.errors import (
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from .._errors import DatabaseConnectionError, QueryError, SchemaError
from .._models import ConnectionTarget, EngineType, ResultSet, SchemaDescription, TableSchema
from .._schema import infer_document_fields
from ._base import (
    Connection,
    EngineAdapter,
    Parameters,
    classify_connect_error,
    driver_message,
    normalize_value,
)

# Operation names are matched case-insensitively with underscores ignored,
# so "insertOne" and "insert_one" are the same thing.
_OPERATIONS = {
    "find": "find",
    "findone": "find_one",
    "insertone": "insert_one",
    "insertmany": "insert_many",
    "updateone": "update_one",
    "updatemany": "update_many",
    "deleteone": "delete_one",
    "deletemany": "delete_many",
}

_AUTH_FAILED = 18
_PARSE_FAILURES = {2, 9}  # BadValue, FailedToParse


def _classify_connect(exc: PyMongoError) -> str:
    if isinstance(exc, OperationFailure) and exc.code == _AUTH_FAILED:
        return "auth"
    if isinstance(exc, (NetworkTimeout, ServerSelectionTimeoutError)):
        return "network" if "refused" in str(exc).lower() else "timeout"
    return classify_connect_error(exc)


def _classify_query(exc: PyMongoError | BSONError) -> str:
    if isinstance(exc, BSONError):
        return "syntax"
    if isinstance(exc, (ExecutionTimeout, NetworkTimeout)):
        return "timeout"
    if isinstance(exc, OperationFailure) and exc.code in _PARSE_FAILURES:
        return "syntax"
    return "engine_rejected"


def _require_mapping(params: Mapping[str, Any], name: str) -> dict[str, Any]:
    value = params.get(name)
    if not isinstance(value, Mapping):
        raise QueryError("syntax", f"'{name}' must be a document")
    return dict(value)


def _optional_mapping(params: Mapping[str, Any], name: str) -> dict[str, Any] | None:
    if params.get(name) is None:
        return None
    return _require_mapping(params, name)


def _projection(params: Mapping[str, Any]) -> dict[str, Any] | list[str] | None:
    value = params.get("projection")
    if isinstance(value, list) and all(isinstance(name, str) for name in value):
        return value
    if value is None or isinstance(value, Mapping):
        return _optional_mapping(params, "projection")
    raise QueryError("syntax", "'projection' must be a document or a list of field names")


class MongoConnection(Connection):
    """A MongoClient bound to one database."""

    engine_type = EngineType.MONGODB

    def __init__(self, client: Any, database: Any, sample_size: int = 100):
        self._client = client
        self._db = database
        self.sample_size = sample_size

    @property
    def closed(self) -> bool:
        return self._client is None

    def execute(
        self,
        statement: str,
        parameters: Parameters = None,
        row_limit: int | None = None,
    ) -> ResultSet:
        if self._client is None:
            raise QueryError("engine_rejected", "Connection is closed")

        operation = _OPERATIONS.get(statement.strip().replace("_", "").lower())
        if operation is None:
            raise QueryError("syntax", f"Unsupported MongoDB operation: '{statement.strip()}'")
        if not isinstance(parameters, Mapping) or not isinstance(parameters.get("collection"), str):
            raise QueryError("syntax", "MongoDB operations require params with a 'collection' name")

        collection = self._db[parameters["collection"]]
        flt = _optional_mapping(parameters, "filter") or {}
        projection = _projection(parameters)
        start = time.perf_counter()
        truncated = False

        try:
            if operation == "find":
                cursor = collection.find(flt, projection)
                if row_limit is not None:
                    cursor = cursor.limit(row_limit + 1)
                documents = list(cursor)
                if row_limit is not None and len(documents) > row_limit:
                    truncated = True
                    documents = documents[:row_limit]
                row_count = len(documents)
            elif operation == "find_one":
                found = collection.find_one(flt, projection)
                documents = [found] if found is not None else []
                row_count = len(documents)
            elif operation == "insert_one":
                document = _require_mapping(parameters, "document")
                collection.insert_one(document)  # fills in _id
                documents = [document]
                row_count = 1
            elif operation == "insert_many":
                raw = parameters.get("documents")
                if not isinstance(raw, list) or not raw or not all(isinstance(d, Mapping) for d in raw):
                    raise QueryError("syntax", "'documents' must be a non-empty list of documents")
                documents = [dict(d) for d in raw]
                collection.insert_many(documents)
                row_count = len(documents)
            elif operation in ("update_one", "update_many"):
                update = _require_mapping(parameters, "update")
                result = getattr(collection, operation)(
                    flt, update, upsert=bool(parameters.get("upsert", False))
                )
                documents = [
                    {
                        "matchedCount": result.matched_count,
                        "modifiedCount": result.modified_count,
                        "upsertedId": result.upserted_id,
                    }
                ]
                row_count = result.modified_count
            else:
                result = getattr(collection, operation)(flt)
                documents = [{"deletedCount": result.deleted_count}]
                row_count = result.deleted_count
        except (PyMongoError, BSONError) as e:
            raise QueryError(_classify_query(e), f"Query failed: {driver_message(e)}") from e

        columns: list[str] = []
        for doc in documents:
            for name in doc:
                if name not in columns:
                    columns.append(name)

        return ResultSet(
            columns=columns,
            rows=[normalize_value(doc) for doc in documents],
            row_count=row_count,
            execution_time_ms=(time.perf_counter() - start) * 1000,
            truncated=truncated,
        )

    def fetch_schema(self) -> SchemaDescription:
        if self._client is None:
            raise SchemaError("engine_rejected", "Connection is closed")
        try:
            tables = [
                TableSchema(
                    table_name=name,
                    columns=infer_document_fields(self._db[name].find({}, limit=self.sample_size)),
                )
                for name in sorted(self._db.list_collection_names())
            ]
        except PyMongoError as e:
            raise SchemaError(
                "engine_rejected", f"Schema introspection failed: {driver_message(e)}"
            ) from e
        return SchemaDescription(engine_type=self.engine_type, database=self._db.name, tables=tables)

    def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            client.close()


class MongoDBAdapter(EngineAdapter):
    """Opens MongoClient connections and verifies them with ``ping``."""

    engine_type = EngineType.MONGODB

    def __init__(self, client_factory: Callable[..., Any] = MongoClient, sample_size: int = 100):
        self.client_factory = client_factory
        self.sample_size = sample_size

    def connect(self, target: ConnectionTarget, timeout: float) -> MongoConnection:
        timeout_ms = max(1, int(timeout * 1000))
        options: dict[str, Any] = {
            "serverSelectionTimeoutMS": timeout_ms,
            "connectTimeoutMS": timeout_ms,
            "tz_aware": True,
        }
        client = None
        try:
            if target.uri:
                client = self.client_factory(target.uri, **options)
            else:
                client = self.client_factory(
                    host=target.host,
                    port=target.port,
                    username=target.username,
                    password=target.password,
                    tls=target.ssl,
                    **options,
                )
            database = client.get_database(target.database)
            client.admin.command("ping")
        except PyMongoError as e:
            if client is not None:
                client.close()
            raise DatabaseConnectionError(
                _classify_connect(e),
                f"Could not connect to mongodb: {driver_message(e, target.password)}",
            ) from e

        return MongoConnection(client, database, self.sample_size)
