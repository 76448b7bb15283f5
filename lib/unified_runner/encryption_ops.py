"""Explicit encryption key management operations on clientEncryption entities"""

from typing import Any, Dict

from .crud import bulk_write_result
from .errors import ConfigurationError
from .options import parse_options
from .results import result_of


def _kwargs(name: str, arguments: Dict[str, Any], *required: str) -> Dict[str, Any]:
    arguments = dict(arguments or {})
    missing = [key for key in required if key not in arguments]
    if missing:
        raise ConfigurationError(f"{name} requires argument(s) {missing}")
    # Options nested under "opts" become plain keyword arguments
    arguments.update(arguments.pop("opts", {}) or {})
    return parse_options(arguments)


def create_data_key(entities, object_id, arguments):
    handle = entities.get_client_encryption(object_id)
    kwargs = _kwargs("createDataKey", arguments, "kmsProvider")
    kms_provider = kwargs.pop("kms_provider")
    return result_of(lambda: handle.create_data_key(kms_provider, **kwargs))


def add_key_alt_name(entities, object_id, arguments):
    handle = entities.get_client_encryption(object_id)
    kwargs = _kwargs("addKeyAltName", arguments, "id", "keyAltName")
    return result_of(lambda: handle.add_key_alt_name(kwargs["id"], kwargs["key_alt_name"]))


def remove_key_alt_name(entities, object_id, arguments):
    handle = entities.get_client_encryption(object_id)
    kwargs = _kwargs("removeKeyAltName", arguments, "id", "keyAltName")
    return result_of(lambda: handle.remove_key_alt_name(kwargs["id"], kwargs["key_alt_name"]))


def delete_key(entities, object_id, arguments):
    handle = entities.get_client_encryption(object_id)
    kwargs = _kwargs("deleteKey", arguments, "id")

    def run():
        result = handle.delete_key(kwargs["id"])
        response = dict(result.raw_result)
        response["deletedCount"] = result.deleted_count
        return response

    return result_of(run)


def get_key(entities, object_id, arguments):
    handle = entities.get_client_encryption(object_id)
    kwargs = _kwargs("getKey", arguments, "id")
    return result_of(lambda: handle.get_key(kwargs["id"]))


def get_keys(entities, object_id, arguments):
    handle = entities.get_client_encryption(object_id)
    return result_of(lambda: list(handle.get_keys()))


def get_key_by_alt_name(entities, object_id, arguments):
    handle = entities.get_client_encryption(object_id)
    kwargs = _kwargs("getKeyByAltName", arguments, "keyAltName")
    return result_of(lambda: handle.get_key_by_alt_name(kwargs["key_alt_name"]))


def rewrap_many_data_key(entities, object_id, arguments):
    handle = entities.get_client_encryption(object_id)
    kwargs = _kwargs("rewrapManyDataKey", arguments, "filter")

    def run():
        result = handle.rewrap_many_data_key(kwargs.pop("filter"), **kwargs)
        if result.bulk_write_result is None:
            return {}
        return {"bulkWriteResult": bulk_write_result(result.bulk_write_result)}

    return result_of(run)


HANDLERS = {
    "createDataKey": create_data_key,
    "addKeyAltName": add_key_alt_name,
    "removeKeyAltName": remove_key_alt_name,
    "deleteKey": delete_key,
    "getKey": get_key,
    "getKeys": get_keys,
    "getKeyByAltName": get_key_by_alt_name,
    "rewrapManyDataKey": rewrap_many_data_key,
}
