"""Shared API dependencies: settings, dispatcher, contacts source."""

from __future__ import annotations

from fastapi import Request

from contactsync.config import Settings
from contactsync.protocol.contacts_plugin import ContactsPlugin
from contactsync.protocol.dispatcher import PacketDispatcher
from contactsync.sources.sql_source import SqlTabularSource


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_source(request: Request) -> SqlTabularSource:
    """Get the contacts table source from app state."""
    source: SqlTabularSource = request.app.state.source
    return source


def get_contacts_plugin(request: Request) -> ContactsPlugin:
    """Get the contacts plugin from app state."""
    plugin: ContactsPlugin = request.app.state.contacts_plugin
    return plugin


def get_dispatcher(request: Request) -> PacketDispatcher:
    """Get the packet dispatcher from app state."""
    dispatcher: PacketDispatcher = request.app.state.dispatcher
    return dispatcher
