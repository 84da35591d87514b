"""Application factory combining the REST and SOAP adapters on one listener."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from .config import Settings, load_settings
from .directory import UserDirectory
from .dispatch import CatchAllHandler, DispatchFront, PathPrefixHandler
from .rest import create_rest_app
from .soap import SoapService, build_default_registry, create_soap_app
from .store import UserStore, open_store

logger = logging.getLogger("userdirectory.service")


class DirectoryApplication(DispatchFront):
    """Dispatch front that keeps handles on the pieces it was assembled from."""

    def __init__(
        self,
        *,
        settings: Settings,
        directory: UserDirectory,
        rest_app: FastAPI,
        soap_app: FastAPI,
    ) -> None:
        super().__init__(
            [
                PathPrefixHandler(soap_app, settings.soap_path, name="soap"),
                CatchAllHandler(rest_app, name="rest"),
            ],
            lifespan_app=rest_app,
        )
        self.settings = settings
        self.directory = directory
        self.rest_app = rest_app
        self.soap_app = soap_app


def _initialise_store(store: UserStore) -> UserStore:
    store.initialize()
    return store


def create_app(
    *,
    settings: Settings | None = None,
    store: UserStore | None = None,
) -> DirectoryApplication:
    """Instantiate the dispatch front serving both protocols."""

    app_settings = settings or load_settings()
    user_store = _initialise_store(store or open_store(app_settings))
    directory = UserDirectory(user_store)

    rest_app = create_rest_app(directory, app_settings)
    soap_service = SoapService(
        directory,
        registry=build_default_registry(max_limit=app_settings.soap_max_limit),
    )
    soap_app = create_soap_app(soap_service, app_settings)

    front = DirectoryApplication(
        settings=app_settings,
        directory=directory,
        rest_app=rest_app,
        soap_app=soap_app,
    )

    logger.info(
        "Serving SOAP on %s and REST under %s (store=%s)",
        app_settings.soap_path,
        app_settings.api_prefix,
        app_settings.store,
    )
    return front


__all__ = ["DirectoryApplication", "create_app"]
