from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape


TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'

email_templates = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(['html']),
    trim_blocks=True,
    lstrip_blocks=True,
)


def _money(value) -> str:
    return f'{float(value or 0):,.2f}'


def _percent(value) -> str:
    return f'{float(value or 0):+.1f}%'


email_templates.filters['money'] = _money
email_templates.filters['percent'] = _percent


def render_email(template_name: str, **context) -> str:
    return email_templates.get_template(f'email/{template_name}').render(**context)
