"""Dependency injection container for the relay client.

The application-side collaborators (identity, message processor, message
dispatcher) have no default and must be overridden before the connection
manager is requested:

    container = Container()
    container.identity.override(providers.Object(my_identity))
    container.processor.override(providers.Object(my_processor))
    container.dispatcher.override(providers.Object(my_dispatcher))
    container.init_resources()
    manager = container.connection_manager()
"""

from dependency_injector import containers, providers

from relaychat.core.config import RelaySettings
from relaychat.core.logging import configure_logging
from relaychat.services.relay.connection import ConnectionManager
from relaychat.services.relay.endpoint import RelayEndpointConfig
from relaychat.services.relay.notifier import CatalogTranslator, LogNotifier


class Container(containers.DeclarativeContainer):
    """Relay client dependency container."""

    # Settings
    settings = providers.Singleton(
        RelaySettings,
    )

    # Logging, set up by container.init_resources()
    logging = providers.Resource(
        configure_logging,
        settings=settings
    )

    # Collaborators supplied by the embedding application
    identity = providers.Dependency()
    processor = providers.Dependency()
    dispatcher = providers.Dependency()

    # Defaults that can be overridden
    notifier = providers.Singleton(LogNotifier)
    translator = providers.Singleton(CatalogTranslator)

    relay_selector = providers.Singleton(
        RelayEndpointConfig,
        settings=settings
    )

    connection_manager = providers.Singleton(
        ConnectionManager,
        identity=identity,
        relays=relay_selector,
        processor=processor,
        dispatcher=dispatcher,
        notifier=notifier,
        translator=translator,
        settings=settings
    )
