"""Index checkout: reading records, refreshing from upstream, rewriting config."""

from cratemirror.index.config_rewriter import (
    DOWNLOAD_URL_FIELD,
    read_registry_config,
    rewrite_download_url,
)
from cratemirror.index.reader import CONFIG_FILENAME, IndexReader
from cratemirror.index.refresher import (
    DEFAULT_INDEX_BRANCH,
    DEFAULT_INDEX_REMOTE,
    GitIndexRefresher,
    IndexRefresher,
)

__all__ = [
    "CONFIG_FILENAME",
    "DEFAULT_INDEX_BRANCH",
    "DEFAULT_INDEX_REMOTE",
    "DOWNLOAD_URL_FIELD",
    "GitIndexRefresher",
    "IndexReader",
    "IndexRefresher",
    "read_registry_config",
    "rewrite_download_url",
]
