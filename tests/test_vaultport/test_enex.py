"""Tests for vaultport.enex."""

import io
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone

from vaultport.enex import (
    ENML_PREFIX,
    EnexWriter,
    assemble,
    enex_header,
    enml_safe,
    escape_xml,
    format_timestamp,
)
from vaultport.errors import Diagnostics
from vaultport.note import ResolvedNote, Resource

WHEN = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _resource(data: bytes = b"abc") -> Resource:
    return Resource(content_hash="900150983cd24fb0d6963f7d28e17f72", mime_type="image/png", display_name="a&b.png", data=data)


class TestTimestamps:
    def test_utc(self):
        assert format_timestamp(WHEN) == "20240102T030405Z"

    def test_naive_is_utc(self):
        assert format_timestamp(datetime(2024, 1, 2, 3, 4, 5)) == "20240102T030405Z"

    def test_offset_converted(self):
        plus_two = timezone(timedelta(hours=2))
        assert format_timestamp(datetime(2024, 1, 2, 5, 4, 5, tzinfo=plus_two)) == "20240102T030405Z"


class TestAssemble:
    def test_exact_record(self):
        record = assemble("Title", "<div>hi</div>", {}, ["one", "two"], WHEN, WHEN)
        assert record == (
            "<note>\n"
            "<title>Title</title>\n"
            "<content><![CDATA["
            '<?xml version="1.0" encoding="UTF-8" standalone="no"?>\n'
            '<!DOCTYPE en-note SYSTEM "http://xml.evernote.com/pub/enml2.dtd">\n'
            "<en-note><div>hi</div></en-note>]]></content>\n"
            "<created>20240102T030405Z</created>\n"
            "<updated>20240102T030405Z</updated>\n"
            "<tag>one</tag>\n"
            "<tag>two</tag>\n"
            "</note>\n"
        )

    def test_title_and_tags_escaped(self):
        record = assemble("""A & B <"x"> 'y'""", "", {}, ["c&d"], WHEN, WHEN)
        assert "<title>A &amp; B &lt;&quot;x&quot;&gt; &apos;y&apos;</title>" in record
        assert "<tag>c&amp;d</tag>" in record

    def test_resource_element(self):
        resource = _resource()
        record = assemble("T", "", {resource.content_hash: resource}, [], WHEN, WHEN)
        assert (
            '<resource><data encoding="base64">YWJj</data><mime>image/png</mime>'
            "<resource-attributes><file-name>a&amp;b.png</file-name></resource-attributes></resource>"
        ) in record

    def test_cdata_terminator_split(self):
        record = assemble("T", "x ]]> y", {}, [], WHEN, WHEN)
        root = ET.fromstring(record)
        assert root.find("content").text == ENML_PREFIX + "x ]]> y</en-note>"

    def test_escape_xml(self):
        assert escape_xml("<&>") == "&lt;&amp;&gt;"


class TestEnmlSafe:
    def test_forbidden_attributes_removed(self):
        html = '<h1 id="intro" class="big" data-pos="1" onclick="x()">T</h1>'
        assert enml_safe(html) == "<h1>T</h1>"

    def test_void_elements_self_closed(self):
        assert enml_safe('<br><hr /><img src="a.png">') == '<br/><hr/><img src="a.png"/>'

    def test_pandoc_figure_unwrapped(self):
        html = (
            '<ul>\n<li><figure>\n<img src="pic.png" alt="pic" />\n'
            '<figcaption aria-hidden="true">pic</figcaption>\n</figure></li>\n</ul>'
        )
        assert enml_safe(html) == '<ul>\n<li><div>\n<img src="pic.png" alt="pic"/>\n</div></li>\n</ul>'

    def test_visible_caption_kept_as_div(self):
        html = '<figure role="group"><img src="a.png" /><figcaption>Chart</figcaption></figure>'
        assert enml_safe(html) == '<div><img src="a.png"/><div>Chart</div></div>'

    def test_aria_and_sectioning_elements(self):
        html = '<section id="s" aria-label="x"><header>H</header><p role="note">T</p></section>'
        assert enml_safe(html) == "<div><div>H</div><p>T</p></div>"


class TestEnexWriter:
    def test_header(self):
        assert enex_header(WHEN, "vaultport", "1.0") == (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            '<!DOCTYPE en-export SYSTEM "http://xml.evernote.com/pub/evernote-export4.dtd">\n'
            '<en-export export-date="20240102T030405Z" application="vaultport" version="1.0">\n'
        )

    def test_document_is_well_formed(self):
        stream = io.StringIO()
        resource = _resource()
        notes = [
            ResolvedNote(title="First", body="<p>one</p>", created_at=WHEN, updated_at=WHEN, tags=["t"]),
            ResolvedNote(
                title="Second",
                body=f'<p><en-media type="image/png" hash="{resource.content_hash}"/></p>',
                created_at=WHEN,
                updated_at=WHEN,
                resources={resource.content_hash: resource},
                diagnostics=Diagnostics(),
            ),
        ]
        with EnexWriter(stream, application="vaultport", version="1.0", exported_at=WHEN) as writer:
            for note in notes:
                writer.write(note)
        assert writer.count == 2

        root = ET.fromstring(stream.getvalue().encode("utf-8"))
        assert root.tag == "en-export"
        assert root.get("export-date") == "20240102T030405Z"
        assert [n.findtext("title") for n in root.findall("note")] == ["First", "Second"]
        second = root.findall("note")[1]
        assert second.find("resource/mime").text == "image/png"
        assert second.find("content").text.startswith(ENML_PREFIX)
        assert stream.getvalue().endswith("</en-export>\n")

    def test_empty_export(self):
        stream = io.StringIO()
        EnexWriter(stream, application="vaultport", version="1.0", exported_at=WHEN).close()
        root = ET.fromstring(stream.getvalue().encode("utf-8"))
        assert root.findall("note") == []
