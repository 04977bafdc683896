# app/templating.py

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


def build_environment(**options) -> Environment:
    """Jinja2 environment over ``app/templates``; HTML templates autoescape."""
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
        **options,
    )
