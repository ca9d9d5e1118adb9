"""
Tests for text file export and import.
"""

import os
import tempfile
import unittest

from dstrans.container import ContainerDocument
from dstrans.errors import FormatError
from dstrans.formats import get_format
from dstrans.text_files import (
    export_document,
    import_document,
    read_lines,
    read_sections,
    section_separator,
    write_lines,
    write_sections,
)


class TestLineFiles(unittest.TestCase):
    """Test flat one-string-per-line files."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, 'msg.txt')

    def tearDown(self):
        import shutil
        shutil.rmtree(self.temp_dir)

    def test_crlf_line_endings(self):
        write_lines(self.path, ['first', 'second'], encoding='utf-8')
        with open(self.path, 'rb') as f:
            self.assertEqual(f.read(), b'first\r\nsecond\r\n')

    def test_round_trip_default_encoding(self):
        strings = ['こんにちは', '', 'Line\\nbreak']
        write_lines(self.path, strings)
        self.assertEqual(read_lines(self.path, 3), strings)

    def test_legacy_code_page(self):
        write_lines(self.path, ['あいう'], encoding='cp932')
        with open(self.path, 'rb') as f:
            self.assertEqual(f.read(), 'あいう\r\n'.encode('cp932'))
        self.assertEqual(read_lines(self.path, 1, encoding='cp932'), ['あいう'])

    def test_lf_only_file(self):
        """Files saved by an editor with bare LF still read."""
        with open(self.path, 'w', encoding='utf-8', newline='\n') as f:
            f.write('a\nb\n')
        self.assertEqual(read_lines(self.path, 2, encoding='utf-8'), ['a', 'b'])

    def test_too_few_lines(self):
        write_lines(self.path, ['only one'])
        with self.assertRaises(FormatError) as context:
            read_lines(self.path, 2)
        self.assertIn('ended after 1 lines', str(context.exception))

    def test_separator_in_flat_file(self):
        write_lines(self.path, ['a', section_separator(3)])
        with self.assertRaises(FormatError) as context:
            read_lines(self.path, 2)
        self.assertIn('above line', str(context.exception))


class TestSectionFiles(unittest.TestCase):
    """Test sectioned files with separator lines."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, 'sections.txt')

    def tearDown(self):
        import shutil
        shutil.rmtree(self.temp_dir)

    def test_separator_format(self):
        self.assertEqual(
            section_separator(2),
            '====================[2]====================',
        )

    def test_round_trip(self):
        sections = [['A', 'BC'], [], ['D']]
        write_sections(self.path, sections)
        self.assertEqual(read_sections(self.path, [2, 0, 1]), sections)

    def test_removed_line(self):
        """A missing line surfaces the next separator and names the section."""
        with open(self.path, 'w', encoding='utf-16', newline='\r\n') as f:
            f.write(section_separator(0) + '\n')
            f.write('A\n')
            f.write(section_separator(1) + '\n')
            f.write('D\n')

        with self.assertRaises(FormatError) as context:
            read_sections(self.path, [2, 1])
        self.assertIn('section [0]', str(context.exception))


class TestDocuments(unittest.TestCase):
    """Test export and import of loaded documents."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, 'doc.txt')

    def tearDown(self):
        import shutil
        shutil.rmtree(self.temp_dir)

    def test_flat_document(self):
        document = ContainerDocument(get_format('dmsb'), ['AB', 'C'])
        self.assertEqual(export_document(document, self.path), 2)

        write_lines(self.path, ['Hello', 'World'])
        self.assertEqual(import_document(document, self.path), 2)
        self.assertEqual(document.strings, ['Hello', 'World'])

    def test_sectioned_document(self):
        document = ContainerDocument(get_format('dmst'), [['A', 'BC'], ['D']])
        export_document(document, self.path)
        self.assertEqual(read_sections(self.path, [2, 1]), [['A', 'BC'], ['D']])

        write_sections(self.path, [['1', '2'], ['3']])
        import_document(document, self.path)
        self.assertEqual(document.strings, [['1', '2'], ['3']])

    def test_record_table_document(self):
        document = ContainerDocument(get_format('parm'), [[['Hi']], [['X', 'YZ']]])
        export_document(document, self.path)
        self.assertEqual(read_sections(self.path, [1, 2]), [['Hi'], ['X', 'YZ']])

        write_sections(self.path, [['Hello'], ['Ex', 'Why']])
        self.assertEqual(import_document(document, self.path), 3)
        self.assertEqual(document.strings, [[['Hello']], [['Ex', 'Why']]])

    def test_failed_import_keeps_strings(self):
        document = ContainerDocument(get_format('dmsb'), ['AB', 'C'])
        write_lines(self.path, ['only one'])
        with self.assertRaises(FormatError):
            import_document(document, self.path)
        self.assertEqual(document.strings, ['AB', 'C'])


if __name__ == '__main__':
    unittest.main()
