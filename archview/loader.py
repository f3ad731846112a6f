"""
Load normalized declaration files.

A file holds either a list of model declarations or a mapping with
``model`` and ``views`` lists. YAML and JSON are both read with PyYAML.

Example file:
    model:
      - el: system
        id: acme/api
        tags: [backend]
    views:
      - id: acme/context
        kind: context
        spec:
          selection: {namespace: acme}
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple, Union

import yaml

from .builder import Source
from .errors import DeclarationError

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {'.yaml', '.yml', '.json'}


def parse_document(data: Any, name: str) -> Tuple[Source, List[Dict[str, Any]]]:
    """Split a loaded document into a Source and its view definitions."""
    if data is None:
        return Source(name), []
    if isinstance(data, list):
        return Source(name, data), []
    if not isinstance(data, dict):
        raise DeclarationError("document must be a list or a mapping", name)

    unknown = set(data) - {'model', 'views'}
    if unknown:
        raise DeclarationError(f"unknown top-level keys: {', '.join(sorted(unknown))}", name)

    model = data.get('model') or []
    views = data.get('views') or []
    if not isinstance(model, list) or not isinstance(views, list):
        raise DeclarationError("'model' and 'views' must be lists", name)
    return Source(name, model), views


def load_source(path: Union[str, Path]) -> Tuple[Source, List[Dict[str, Any]]]:
    """
    Load one declaration file.

    Raises:
        FileNotFoundError: If the file does not exist
        DeclarationError: If the file is not valid YAML/JSON of the right shape
    """
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise DeclarationError(f"invalid YAML: {e}", str(path)) from e
    source, views = parse_document(data, str(path))
    logger.debug(f"Loaded {path}: {len(source)} declarations, {len(views)} views")
    return source, views


def expand_paths(paths: Sequence[Union[str, Path]]) -> List[Path]:
    """Expand directories into their supported files, sorted by name."""
    result = []
    for p in paths:
        p = Path(p)
        if p.is_dir():
            result.extend(sorted(f for f in p.rglob('*') if f.suffix in SUPPORTED_SUFFIXES))
        else:
            result.append(p)
    return result


def load_workspace(
    paths: Sequence[Union[str, Path]],
    parallel: bool = True,
    max_workers: int = 4,
) -> Tuple[List[Source], List[Dict[str, Any]]]:
    """
    Load several files, keeping the given path order.

    Files are read concurrently; results are collected in path order so the
    merge order stays stable.

    Returns:
        (sources, view definitions)
    """
    files = expand_paths(paths)
    if parallel and len(files) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            loaded = list(executor.map(load_source, files))
    else:
        loaded = [load_source(f) for f in files]

    sources = [source for source, _ in loaded]
    views = [view for _, file_views in loaded for view in file_views]
    logger.info(f"Loaded {len(files)} files")
    return sources, views
