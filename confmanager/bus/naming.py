"""
Bus Naming

Object paths, interface names and error names derived from the service name.
"""

import re

from confmanager.common.settings import SERVICE_NAME

APPLICATION_SIGNAL = "ConfigurationChanged"

_INVALID_PATH_CHARS = re.compile(r"[^A-Za-z0-9_]")


def service_path(service_name: str = SERVICE_NAME) -> str:
    """'com.system.configurationManager' -> '/com/system/configurationManager'"""
    return "/" + service_name.replace(".", "/")


def application_path(application: str, service_name: str = SERVICE_NAME) -> str:
    return f"{service_path(service_name)}/Application/{application}"


def application_interface(service_name: str = SERVICE_NAME) -> str:
    return f"{service_name}.Application.Configuration"


def manager_interface(service_name: str = SERVICE_NAME) -> str:
    return f"{service_name}.Manager"


def error_name(service_name: str, short_name: str) -> str:
    return f"{service_name}.Error.{short_name}"


def short_error_name(full_name: str) -> str:
    return full_name.rsplit(".", 1)[-1]


def normalize_application_name(stem: str) -> str:
    """
    Map a file base name to a valid object path element.

    Characters outside [A-Za-z0-9_] become '_', so 'my-app' and 'my_app'
    name the same application.
    """
    return _INVALID_PATH_CHARS.sub("_", stem)
