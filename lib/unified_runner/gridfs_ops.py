"""GridFS bucket operations"""

from collections import abc

from .crud import prepare_arguments, none_of
from .errors import ConfigurationError
from .results import result_of

HEX_BYTES = "$$hexBytes"


def _source_bytes(source) -> bytes:
    if isinstance(source, abc.Mapping) and HEX_BYTES in source:
        try:
            return bytes.fromhex(source[HEX_BYTES])
        except ValueError:
            raise ConfigurationError(f"Invalid hex in upload source: {source[HEX_BYTES]!r}")
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    raise ConfigurationError(f"Unsupported upload source {source!r}")


def _file_id(kwargs):
    kwargs["file_id"] = kwargs.pop("id")
    return kwargs


def delete(entities, object_id, arguments):
    bucket = entities.get_bucket(object_id)
    kwargs = _file_id(prepare_arguments(entities, "delete", arguments, "id"))
    return none_of(lambda: bucket.delete(**kwargs))


def download(entities, object_id, arguments):
    bucket = entities.get_bucket(object_id)
    kwargs = _file_id(prepare_arguments(entities, "download", arguments, "id"))

    def read():
        with bucket.open_download_stream(**kwargs) as stream:
            return stream.read()

    return result_of(read)


def download_by_name(entities, object_id, arguments):
    bucket = entities.get_bucket(object_id)
    kwargs = prepare_arguments(entities, "downloadByName", arguments, "filename")

    def read():
        with bucket.open_download_stream_by_name(**kwargs) as stream:
            return stream.read()

    return result_of(read)


def upload(entities, object_id, arguments):
    bucket = entities.get_bucket(object_id)
    kwargs = prepare_arguments(entities, "upload", arguments, "filename", "source")
    kwargs["source"] = _source_bytes(kwargs["source"])
    if "content_type" in kwargs:
        kwargs.setdefault("metadata", {})["contentType"] = kwargs.pop("content_type")
    kwargs.pop("disable_md5", None)
    return result_of(lambda: bucket.upload_from_stream(**kwargs))


HANDLERS = {
    "delete": delete,
    "download": download,
    "downloadByName": download_by_name,
    "upload": upload,
}
