"""XML <-> JSON conversion for ticketing API responses."""
import json
import logging
from pathlib import Path
from typing import Any, Collection, Dict, Union

from bs4 import BeautifulSoup, CData, NavigableString, ParserRejectedMarkup, Tag
from lxml import etree

from processor.exceptions import ParseError

logger = logging.getLogger(__name__)

TEXT_KEY = '_'
ATTR_KEY = '$'


def xml_to_json(xml_data: Union[str, bytes], force_list: Collection[str] = ()) -> Dict[str, Any]:
    """
    Convert an XML document into nested dicts, lists and strings.

    Attributes are merged into the element's keys next to its children.
    Leaf elements without attributes collapse to their text. Repeated
    children become lists; a single child only becomes a list when it is a
    direct child of the root element and its tag is listed in ``force_list``.
    Fields of the same name deeper in the document are left as they are.

    Args:
        xml_data: XML document as text or bytes
        force_list: Record tags under the root that are always returned as lists

    Returns:
        Dict with the root tag as its only key

    Raises:
        ParseError: If the document is empty, malformed or has no root element
    """
    if not xml_data or not xml_data.strip():
        raise ParseError("Empty XML document")

    _check_well_formed(xml_data)

    try:
        soup = BeautifulSoup(xml_data, 'xml')
    except ParserRejectedMarkup as e:
        logger.error(f"Error converting XML to JSON: {e}")
        raise ParseError(f"Malformed XML document: {e}") from e

    root = next((child for child in soup.contents if isinstance(child, Tag)), None)
    if root is None:
        logger.error("Error converting XML to JSON: no root element")
        raise ParseError("No root element found in XML document")

    return {_tag_name(root): _element_to_value(root, frozenset(force_list))}


def json_to_xml(data: Any, root_name: str = 'root') -> str:
    """
    Convert nested dicts, lists and scalars into an XML document.

    A dict with a single non-list entry names the root element itself,
    anything else is wrapped in ``root_name``. ``$`` holds attributes and
    ``_`` holds element text.

    Args:
        data: Value to serialize
        root_name: Root tag used when ``data`` does not name one

    Returns:
        XML document string including the XML declaration
    """
    soup = BeautifulSoup('', 'xml')

    if isinstance(data, dict) and len(data) == 1:
        name, value = next(iter(data.items()))
        if not isinstance(value, list):
            root_name, data = name, value

    root = soup.new_tag(root_name)
    _fill_element(soup, root, data)
    soup.append(root)
    return str(soup)


def convert_xml_file(xml_path: Union[str, Path], json_path: Union[str, Path]) -> Path:
    """
    Convert an XML file on disk to an indented JSON file.

    Args:
        xml_path: Source XML file
        json_path: Destination JSON file

    Returns:
        Path of the written JSON file
    """
    xml_path, json_path = Path(xml_path), Path(json_path)
    data = xml_to_json(xml_path.read_bytes())
    json_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding='utf-8')
    logger.info(f"Successfully converted {xml_path} to {json_path}")
    return json_path


def _tag_name(element: Tag) -> str:
    if element.prefix:
        return f"{element.prefix}:{element.name}"
    return element.name


def _check_well_formed(xml_data: Union[str, bytes]) -> None:
    """
    Reject documents that lxml can only read in recovery mode.

    BeautifulSoup parses with ``recover=True`` and silently repairs
    truncated bodies, so the strict parse runs first.

    Raises:
        ParseError: If the document is not well-formed XML
    """
    if isinstance(xml_data, str):
        parser = etree.XMLParser(recover=False, resolve_entities=False, encoding='utf-8')
        xml_data = xml_data.encode('utf-8')
    else:
        parser = etree.XMLParser(recover=False, resolve_entities=False)

    try:
        etree.fromstring(xml_data, parser)
    except etree.XMLSyntaxError as e:
        logger.error(f"Error converting XML to JSON: {e}")
        raise ParseError(f"Malformed XML document: {e}") from e


def _element_to_value(element: Tag, force_list: frozenset) -> Any:
    """Convert ``element``; ``force_list`` applies to its direct children only."""
    children = [child for child in element.children if isinstance(child, Tag)]
    # Comments and processing instructions are NavigableString subclasses too.
    text = ''.join(
        str(child) for child in element.children
        if type(child) in (NavigableString, CData)
    ).strip()

    if not children and not element.attrs:
        return text

    result: Dict[str, Any] = {}
    for name, value in element.attrs.items():
        _add_value(result, name, value, frozenset())
    for child in children:
        _add_value(result, _tag_name(child), _element_to_value(child, frozenset()), force_list)
    if text:
        result[TEXT_KEY] = text

    return result


def _add_value(result: Dict[str, Any], key: str, value: Any, force_list: frozenset) -> None:
    if key in result:
        existing = result[key]
        if isinstance(existing, list):
            existing.append(value)
        else:
            result[key] = [existing, value]
    elif key in force_list:
        result[key] = [value]
    else:
        result[key] = value


def _fill_element(soup: BeautifulSoup, element: Tag, value: Any) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            if key == ATTR_KEY:
                for attr_name, attr_value in item.items():
                    element[attr_name] = _to_text(attr_value)
            elif key == TEXT_KEY:
                element.append(_to_text(item))
            elif isinstance(item, list):
                for entry in item:
                    child = soup.new_tag(key)
                    _fill_element(soup, child, entry)
                    element.append(child)
            else:
                child = soup.new_tag(key)
                _fill_element(soup, child, item)
                element.append(child)
    elif isinstance(value, list):
        for entry in value:
            child = soup.new_tag('item')
            _fill_element(soup, child, entry)
            element.append(child)
    elif value is not None and value != '':
        element.string = _to_text(value)


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)
