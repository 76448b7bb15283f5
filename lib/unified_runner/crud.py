"""CRUD, index, cursor and session operations against client/database/collection entities.

Every handler takes ``(entities, object_id, arguments)`` and returns an
``OperationResult``. Argument problems (missing required argument, unknown
entity) raise ConfigurationError before the driver is called; anything the
driver raises is captured in the result.
"""

from collections import abc
from typing import Any, Callable, Dict

import pymongo
from pymongo import (
    DeleteMany,
    DeleteOne,
    InsertOne,
    ReplaceOne,
    ReturnDocument,
    UpdateMany,
    UpdateOne,
)
from pymongo.operations import SearchIndexModel

from .constants import EntityKind
from .entities import EntityRegistry
from .errors import ConfigurationError
from .options import parse_options
from .results import OperationResult, result_of

Handler = Callable[[EntityRegistry, str, Dict[str, Any]], OperationResult]


def prepare_arguments(entities: EntityRegistry, name: str, arguments: Dict[str, Any], *required: str) -> Dict[str, Any]:
    """Check required arguments, resolve ``session`` and convert to keyword arguments."""
    arguments = dict(arguments or {})
    missing = [key for key in required if key not in arguments]
    if missing:
        raise ConfigurationError(f"{name} requires argument(s) {missing}")
    if "session" in arguments:
        arguments["session"] = entities.get_session(arguments["session"])
    return parse_options(arguments)


def invoke(action: Callable[..., Any], kwargs: Dict[str, Any]) -> Any:
    """Call ``action``, applying an operation-level timeout when one was given."""
    timeout = kwargs.pop("timeout", None)
    if timeout is None:
        return action(**kwargs)
    with pymongo.timeout(timeout):
        return action(**kwargs)


def none_of(action: Callable[[], Any]) -> OperationResult:
    result = result_of(action)
    return result if result.failed else OperationResult.NONE


def write_result(result) -> Dict[str, Any]:
    if not result.acknowledged:
        return {"acknowledged": False}
    return {}


def insert_one_result(result) -> Dict[str, Any]:
    return write_result(result) or {"insertedId": result.inserted_id}


def insert_many_result(result) -> Dict[str, Any]:
    if not result.acknowledged:
        return {"acknowledged": False}
    return {"insertedIds": {str(i): _id for i, _id in enumerate(result.inserted_ids)}}


def update_result(result) -> Dict[str, Any]:
    if not result.acknowledged:
        return {"acknowledged": False}
    document = {
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
        "upsertedCount": 0 if result.upserted_id is None else 1,
    }
    if result.upserted_id is not None:
        document["upsertedId"] = result.upserted_id
    return document


def delete_result(result) -> Dict[str, Any]:
    return write_result(result) or {"deletedCount": result.deleted_count}


def bulk_write_result(result) -> Dict[str, Any]:
    if not result.acknowledged:
        return {"acknowledged": False}
    return {
        "deletedCount": result.deleted_count,
        "insertedCount": result.inserted_count,
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
        "upsertedCount": result.upserted_count,
        "upsertedIds": {str(k): v for k, v in result.upserted_ids.items()},
        "insertedIds": {},
    }


WRITE_MODELS = {
    "insertOne": (InsertOne, ("document",)),
    "updateOne": (UpdateOne, ("filter", "update")),
    "updateMany": (UpdateMany, ("filter", "update")),
    "replaceOne": (ReplaceOne, ("filter", "replacement")),
    "deleteOne": (DeleteOne, ("filter",)),
    "deleteMany": (DeleteMany, ("filter",)),
}


def write_model(request: Dict[str, Any]):
    if not isinstance(request, abc.Mapping) or len(request) != 1:
        raise ConfigurationError(f"Bulk write request must have exactly one key: {request!r}")
    name, spec = next(iter(request.items()))
    if name not in WRITE_MODELS:
        raise ConfigurationError(f"Unsupported bulk write request {name!r}")
    model, positional = WRITE_MODELS[name]
    kwargs = parse_options(spec)
    missing = [key for key in positional if key not in kwargs]
    if missing:
        raise ConfigurationError(f"{name} request requires {missing}")
    args = [kwargs.pop(key) for key in positional]
    return model(*args, **kwargs)


def insert_one(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "insertOne", arguments, "document")
    return result_of(lambda: insert_one_result(invoke(collection.insert_one, kwargs)))


def insert_many(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "insertMany", arguments, "documents")
    return result_of(lambda: insert_many_result(invoke(collection.insert_many, kwargs)))


def update_one(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "updateOne", arguments, "filter", "update")
    return result_of(lambda: update_result(invoke(collection.update_one, kwargs)))


def update_many(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "updateMany", arguments, "filter", "update")
    return result_of(lambda: update_result(invoke(collection.update_many, kwargs)))


def replace_one(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "replaceOne", arguments, "filter", "replacement")
    return result_of(lambda: update_result(invoke(collection.replace_one, kwargs)))


def delete_one(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "deleteOne", arguments, "filter")
    return result_of(lambda: delete_result(invoke(collection.delete_one, kwargs)))


def delete_many(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "deleteMany", arguments, "filter")
    return result_of(lambda: delete_result(invoke(collection.delete_many, kwargs)))


def bulk_write(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "bulkWrite", arguments, "requests")
    kwargs["requests"] = [write_model(request) for request in kwargs["requests"]]
    return result_of(lambda: bulk_write_result(invoke(collection.bulk_write, kwargs)))


def aggregate(entities, object_id, arguments):
    target = entities.get(object_id)
    kwargs = prepare_arguments(entities, "aggregate", arguments, "pipeline")
    return result_of(lambda: list(invoke(target.aggregate, kwargs)))


def find(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "find", arguments)
    return result_of(lambda: list(invoke(collection.find, kwargs)))


def find_one(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "findOne", arguments)
    return result_of(lambda: invoke(collection.find_one, kwargs))


def distinct(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "distinct", arguments, "fieldName")
    kwargs["key"] = kwargs.pop("field_name")
    return result_of(lambda: invoke(collection.distinct, kwargs))


def count_documents(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "countDocuments", arguments, "filter")
    return result_of(lambda: invoke(collection.count_documents, kwargs))


def estimated_document_count(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "estimatedDocumentCount", arguments)
    return result_of(lambda: invoke(collection.estimated_document_count, kwargs))


def _return_document(kwargs: Dict[str, Any]) -> None:
    if "return_document" in kwargs:
        kwargs["return_document"] = ReturnDocument.AFTER if kwargs["return_document"] == "After" else ReturnDocument.BEFORE


def find_one_and_update(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "findOneAndUpdate", arguments, "filter", "update")
    _return_document(kwargs)
    return result_of(lambda: invoke(collection.find_one_and_update, kwargs))


def find_one_and_replace(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "findOneAndReplace", arguments, "filter", "replacement")
    _return_document(kwargs)
    return result_of(lambda: invoke(collection.find_one_and_replace, kwargs))


def find_one_and_delete(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "findOneAndDelete", arguments, "filter")
    return result_of(lambda: invoke(collection.find_one_and_delete, kwargs))


def list_databases(entities, object_id, arguments):
    client = entities.get_client(object_id)
    kwargs = prepare_arguments(entities, "listDatabases", arguments)
    return result_of(lambda: list(invoke(client.list_databases, kwargs)))


def list_database_names(entities, object_id, arguments):
    client = entities.get_client(object_id)
    kwargs = prepare_arguments(entities, "listDatabaseNames", arguments)
    return result_of(lambda: invoke(client.list_database_names, kwargs))


def list_collections(entities, object_id, arguments):
    database = entities.get_database(object_id)
    kwargs = prepare_arguments(entities, "listCollections", arguments)
    if "batch_size" in kwargs:
        kwargs["cursor"] = {"batchSize": kwargs.pop("batch_size")}
    return result_of(lambda: list(invoke(database.list_collections, kwargs)))


def list_collection_names(entities, object_id, arguments):
    database = entities.get_database(object_id)
    kwargs = prepare_arguments(entities, "listCollectionNames", arguments)
    return result_of(lambda: invoke(database.list_collection_names, kwargs))


def list_indexes(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "listIndexes", arguments)
    return result_of(lambda: list(invoke(collection.list_indexes, kwargs)))


def list_index_names(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "listIndexNames", arguments)
    return result_of(lambda: [index["name"] for index in invoke(collection.list_indexes, kwargs)])


def drop_collection(entities, object_id, arguments):
    database = entities.get_database(object_id)
    kwargs = prepare_arguments(entities, "dropCollection", arguments, "collection")
    kwargs["name_or_collection"] = kwargs.pop("collection")
    return none_of(lambda: invoke(database.drop_collection, kwargs))


def create_collection(entities, object_id, arguments):
    database = entities.get_database(object_id)
    kwargs = prepare_arguments(entities, "createCollection", arguments, "collection")
    kwargs["name"] = kwargs.pop("collection")
    kwargs["check_exists"] = False
    return none_of(lambda: invoke(database.create_collection, kwargs))


def modify_collection(entities, object_id, arguments):
    database = entities.get_database(object_id)
    arguments = dict(arguments or {})
    if "collection" not in arguments:
        raise ConfigurationError("modifyCollection requires argument(s) ['collection']")
    session = entities.get_session(arguments.pop("session")) if "session" in arguments else None
    command = {"collMod": arguments.pop("collection")}
    command.update(arguments)
    return result_of(lambda: database.command(command, session=session))


def rename(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    arguments = dict(arguments or {})
    if "to" not in arguments:
        raise ConfigurationError("rename requires argument(s) ['to']")
    arguments["newName"] = arguments.pop("to")
    kwargs = prepare_arguments(entities, "rename", arguments)
    kwargs["dropTarget"] = kwargs.pop("drop_target", False)
    return none_of(lambda: invoke(collection.rename, kwargs))


def create_index(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "createIndex", arguments, "keys")
    keys = kwargs.pop("keys")
    kwargs["keys"] = list(keys.items()) if isinstance(keys, abc.Mapping) else keys
    return result_of(lambda: invoke(collection.create_index, kwargs))


def drop_index(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "dropIndex", arguments, "name")
    kwargs["index_or_name"] = kwargs.pop("name")
    return none_of(lambda: invoke(collection.drop_index, kwargs))


def _search_index_model(model: Dict[str, Any]) -> SearchIndexModel:
    return SearchIndexModel(**parse_options(model))


def create_search_index(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "createSearchIndex", arguments, "model")
    kwargs["model"] = _search_index_model(kwargs["model"])
    return result_of(lambda: invoke(collection.create_search_index, kwargs))


def create_search_indexes(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "createSearchIndexes", arguments, "models")
    kwargs["models"] = [_search_index_model(model) for model in kwargs["models"]]
    return result_of(lambda: invoke(collection.create_search_indexes, kwargs))


def update_search_index(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "updateSearchIndex", arguments, "name", "definition")
    return none_of(lambda: invoke(collection.update_search_index, kwargs))


def drop_search_index(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "dropSearchIndex", arguments, "name")
    return none_of(lambda: invoke(collection.drop_search_index, kwargs))


def list_search_indexes(entities, object_id, arguments):
    """Issue the ``$listSearchIndexes`` aggregation.

    The stage filter is empty without a name and ``{"name": name}`` with one.
    ``aggregationOptions`` are passed through to ``aggregate`` unchanged.
    """
    collection = entities.get_collection(object_id)
    arguments = dict(arguments or {})
    stage = {"name": arguments["name"]} if "name" in arguments else {}
    options = dict(arguments.get("aggregationOptions", {}))
    if "session" in arguments:
        options["session"] = entities.get_session(arguments["session"])
    pipeline = [{"$listSearchIndexes": stage}]
    return result_of(lambda: list(collection.aggregate(pipeline, **options)))


def create_find_cursor(entities, object_id, arguments):
    collection = entities.get_collection(object_id)
    kwargs = prepare_arguments(entities, "createFindCursor", arguments, "filter")
    return result_of(lambda: invoke(collection.find, kwargs))


def create_change_stream(entities, object_id, arguments):
    target = entities.get(object_id)
    kwargs = prepare_arguments(entities, "createChangeStream", arguments)
    return result_of(lambda: invoke(target.watch, kwargs))


def iterate_until_document_or_error(entities, object_id, arguments):
    cursor = entities.get_cursor(object_id)
    return result_of(lambda: next(cursor))


def close(entities, object_id, arguments):
    target = entities.get(object_id)
    return none_of(target.close)


def run_command(entities, object_id, arguments):
    database = entities.get_database(object_id)
    kwargs = prepare_arguments(entities, "runCommand", arguments, "command", "commandName")
    command_name = kwargs.pop("command_name")
    # The command name must be the first key of the command document
    command = {command_name: kwargs["command"].get(command_name, 1)}
    command.update(kwargs.pop("command"))
    return result_of(lambda: invoke(database.command, dict(kwargs, command=command)))


def start_transaction(entities, object_id, arguments):
    session = entities.get_session(object_id)
    kwargs = parse_options(dict(arguments or {}))
    return none_of(lambda: session.start_transaction(**kwargs))


def commit_transaction(entities, object_id, arguments):
    session = entities.get_session(object_id)
    return none_of(session.commit_transaction)


def abort_transaction(entities, object_id, arguments):
    session = entities.get_session(object_id)
    return none_of(session.abort_transaction)


def end_session(entities, object_id, arguments):
    session = entities.get_session(object_id)
    return none_of(session.end_session)


HANDLERS: Dict[str, Handler] = {
    "insertOne": insert_one,
    "insertMany": insert_many,
    "updateOne": update_one,
    "updateMany": update_many,
    "replaceOne": replace_one,
    "deleteOne": delete_one,
    "deleteMany": delete_many,
    "bulkWrite": bulk_write,
    "aggregate": aggregate,
    "find": find,
    "findOne": find_one,
    "distinct": distinct,
    "countDocuments": count_documents,
    "estimatedDocumentCount": estimated_document_count,
    "findOneAndUpdate": find_one_and_update,
    "findOneAndReplace": find_one_and_replace,
    "findOneAndDelete": find_one_and_delete,
    "listDatabases": list_databases,
    "listDatabaseNames": list_database_names,
    "listCollections": list_collections,
    "listCollectionNames": list_collection_names,
    "listIndexes": list_indexes,
    "listIndexNames": list_index_names,
    "dropCollection": drop_collection,
    "createCollection": create_collection,
    "modifyCollection": modify_collection,
    "rename": rename,
    "createIndex": create_index,
    "dropIndex": drop_index,
    "createSearchIndex": create_search_index,
    "createSearchIndexes": create_search_indexes,
    "updateSearchIndex": update_search_index,
    "dropSearchIndex": drop_search_index,
    "listSearchIndexes": list_search_indexes,
    "createFindCursor": create_find_cursor,
    "createChangeStream": create_change_stream,
    "iterateUntilDocumentOrError": iterate_until_document_or_error,
    "close": close,
    "runCommand": run_command,
    "startTransaction": start_transaction,
    "commitTransaction": commit_transaction,
    "abortTransaction": abort_transaction,
    "endSession": end_session,
}


def save_kind(name: str) -> str:
    """Entity kind used when the result of ``name`` is saved as an entity."""
    if name == "createFindCursor":
        return EntityKind.CURSOR
    if name == "createChangeStream":
        return EntityKind.CHANGE_STREAM
    return EntityKind.VALUE
