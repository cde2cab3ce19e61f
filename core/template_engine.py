# core/template_engine.py
"""
Email template loading for the Enorehab notification emails

Templates are plain HTML files carrying {{KEY}} placeholders. They are looked
up in an ordered list of directories; values are HTML-escaped before
substitution and {{YEAR}} is filled with the current year unless supplied.
"""

import re
import logging
from datetime import date
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Set

from bs4 import BeautifulSoup
from markupsafe import escape

logger = logging.getLogger('enorehab.templates')

PLACEHOLDER_PATTERN = re.compile(r'\{\{([A-Z0-9_]+)\}\}')


class TemplateNotFoundError(Exception):
    """No candidate directory holds the requested template"""

    def __init__(self, name: str, searched: Iterable[Path] = ()):
        self.name = name
        self.searched = [str(path) for path in searched]
        super().__init__(f"Template non trouvé: {name}")


class EmailTemplateEngine:
    """Finds templates on disk and fills their placeholders"""

    def __init__(self, template_dirs: Iterable[Path], autofill_year: bool = True):
        self.template_dirs: List[Path] = [Path(d) for d in template_dirs]
        self.autofill_year = autofill_year

    def find_template(self, name: str) -> Path:
        # Bare file names only
        if not name or Path(name).name != name:
            raise TemplateNotFoundError(name)

        candidates = [directory / name for directory in self.template_dirs]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        raise TemplateNotFoundError(name, candidates)

    def substitute(self, content: str, variables: Mapping[str, Any]) -> str:
        values = dict(variables)
        if self.autofill_year and 'YEAR' not in values:
            values['YEAR'] = date.today().year

        # Single pass: placeholders inside submitted values stay literal
        def replace(match):
            key = match.group(1)
            if key not in values:
                return match.group(0)
            value = values[key]
            return str(escape('' if value is None else value))

        return PLACEHOLDER_PATTERN.sub(replace, content)

    def render(self, name: str, variables: Mapping[str, Any]) -> str:
        path = self.find_template(name)
        html = self.substitute(path.read_text(encoding='utf-8'), variables)

        leftover = self.missing_placeholders(html)
        if leftover:
            logger.warning(f"Template {name} rendered with unfilled placeholders: {sorted(leftover)}")
        return html

    @staticmethod
    def missing_placeholders(content: str) -> Set[str]:
        return set(PLACEHOLDER_PATTERN.findall(content))


def html_to_text(html_content: str) -> str:
    """
    Convert HTML to plain text with proper formatting for email
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, 'html.parser')

    for hidden in soup.find_all(['style', 'script', 'head']):
        hidden.decompose()

    for br in soup.find_all('br'):
        br.replace_with('\n')

    for p in soup.find_all('p'):
        p.insert_after('\n\n')

    for header in soup.find_all(['h1', 'h2', 'h3', 'h4', 'h5', 'h6']):
        header.insert_before('\n')
        header.insert_after('\n')

    for li in soup.find_all('li'):
        li.insert_before('- ')
        li.insert_after('\n')

    # Keep link targets visible
    for link in soup.find_all('a', href=True):
        link_text = link.get_text()
        href = link['href']
        if href != link_text:
            link.replace_with(f"{link_text} ({href})")

    text = soup.get_text()

    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r' *\n *', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()
