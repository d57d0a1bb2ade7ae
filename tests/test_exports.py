import importlib

import pytest
from kotone.event.model import DispatchedEvent
from kotone.gateway.event import IncomingGatewayEvent, OutgoingGatewayEvent


@pytest.mark.parametrize(
    "namespace,exported,parent",
    [
        ("kotone.gateway", "kotone.gateway.event", OutgoingGatewayEvent),
        ("kotone.gateway", "kotone.gateway.event", IncomingGatewayEvent),
        ("kotone.event", "kotone.event.model", DispatchedEvent),
    ],
)
def test_all_event_types_are_exported(namespace, exported, parent):
    package_module = importlib.import_module(namespace)
    event_module = importlib.import_module(exported)

    errors: list[AttributeError] = []
    for name, what in vars(event_module).items():
        if not isinstance(what, type):
            continue

        if issubclass(what, parent):
            try:
                getattr(package_module, name)
            except AttributeError as e:
                errors.append(e)

    if errors:
        raise ExceptionGroup("Missing re-exports", errors)


def test_all_models_are_exported():
    models = importlib.import_module("kotone.models")

    for module_name in ("embed", "interaction", "message", "presence"):
        module = importlib.import_module(f"kotone.models.{module_name}")

        for name, what in vars(module).items():
            if isinstance(what, type) and what.__module__ == module.__name__:
                assert getattr(models, name) is what
