"""
Model lister - discovers the models a provider offers.

Vendors answer in different shapes: a bare array of ids, an array of
objects carrying an id field, or either of those nested under a key.
ModelsShape on the descriptor says which, and an optional prefix such as
"models/" is stripped from every id.
"""

import logging
from typing import Any, Optional, Union

from provider_bridge.auth import resolve_auth
from provider_bridge.builder import build_models_request
from provider_bridge.config import DEFAULT_MODELS_TIMEOUT_SECONDS
from provider_bridge.descriptors import ModelsShape, ProviderDescriptor
from provider_bridge.errors import ParseError, ProviderError
from provider_bridge.interpreter import check_status, parse_json
from provider_bridge.paths import MISSING, get_path
from provider_bridge.transport import RequestContext, Transport

logger = logging.getLogger(__name__)


def normalize_models(data: Any, shape: ModelsShape, provider_id: Optional[str] = None) -> list[str]:
    """Flatten a listing body into model ids, order preserved, duplicates dropped."""
    items = get_path(data, shape.list_path) if shape.list_path else data
    if items is MISSING:
        raise ParseError("Model list missing from response", path=shape.list_path, provider_id=provider_id)
    if not isinstance(items, list):
        raise ParseError("Expected a list of models", path=shape.list_path, provider_id=provider_id)

    models: list[str] = []
    for item in items:
        if isinstance(item, str):
            model_id = item
        elif shape.id_path:
            model_id = get_path(item, shape.id_path, None)
        else:
            model_id = None
        if not isinstance(model_id, str) or not model_id:
            logger.debug(f"{provider_id}: skipping model entry without an id: {item!r:.80}")
            continue
        if shape.strip_prefix and model_id.startswith(shape.strip_prefix):
            model_id = model_id[len(shape.strip_prefix):]
        if model_id not in models:
            models.append(model_id)
    return models


async def list_models(
    descriptor: ProviderDescriptor,
    api_key: str,
    transport: Optional[Transport] = None,
    timeout_seconds: float = DEFAULT_MODELS_TIMEOUT_SECONDS,
) -> Union[list[str], ProviderError]:
    """
    List model ids for a provider.

    Descriptors without a listing endpoint return their static model list.
    An empty listing returns []. A failure is returned as a ProviderError
    value, never as an empty list.
    """
    if descriptor.models_endpoint is None:
        return list(descriptor.models)

    transport = transport or Transport()
    ctx = RequestContext(descriptor=descriptor, api_key=api_key, timeout_seconds=timeout_seconds)
    try:
        request = build_models_request(descriptor, resolve_auth(descriptor, api_key))
        response = await transport.send(request, ctx)
        error = await check_status(response, descriptor.id)
        if error is not None:
            return error
        models = normalize_models(parse_json(response, descriptor.id), descriptor.models_endpoint, descriptor.id)
    except ProviderError as e:
        logger.warning(f"Model listing failed for {descriptor.id}: {e.message}")
        return e

    logger.debug(f"{descriptor.id}: {len(models)} model(s) listed")
    return models
