import os
import sys
import types
import tempfile
import unittest
import argparse
from sencrypt.conf import Config, BaseConfig, String, Integer, Toggle, Path, NOT_SET
from sencrypt.error import ConfigReadError


class TestConfig(BaseConfig):
    test_str = String('str help', 'the default')
    test_int = Integer('int help', 9)
    test_positive = Integer('positive help', 1, minimum=1)
    test_false_toggle = Toggle('toggle help', False)
    test_true_toggle = Toggle('toggle help', True)
    test_path = Path('path help', default='~/somewhere')


class ConfigurationTests(unittest.TestCase):

    @unittest.skipIf('linux' not in sys.platform, 'skipping linux only test')
    def test_linux_defaults(self):
        c = Config()
        self.assertEqual(c.data_dir, os.path.expanduser('~/.local/share/sencrypt'))
        self.assertEqual(c.config, '')
        self.assertEqual(c.default_config_path, os.path.expanduser('~/.local/share/sencrypt/sencrypt.yml'))
        self.assertEqual(c.log_file_path, os.path.expanduser('~/.local/share/sencrypt/sencrypt.log'))
        self.assertEqual(c.transfer_storage_dir, os.path.expanduser('~/.local/share/sencrypt/transfers'))

    def test_defaults(self):
        c = Config()
        self.assertEqual(c.chunk_size, 10 * 2 ** 20)
        self.assertEqual(c.read_size, 64 * 2 ** 10)
        self.assertEqual(c.chunk_attempts, 3)
        self.assertEqual(c.rsa_key_size, 4096)
        self.assertEqual(c.storage_url, '')
        self.assertFalse(c.delete_after_receive)
        c.storage_dir = '/tmp/chunks'
        self.assertEqual(c.transfer_storage_dir, '/tmp/chunks')

    def test_search_order(self):
        c = TestConfig()
        c.runtime = {'test_str': 'runtime'}
        c.arguments = {'test_str': 'arguments'}
        c.environment = {'test_str': 'environment'}
        c.persisted = {'test_str': 'persisted'}
        self.assertEqual(c.test_str, 'runtime')
        c.runtime = {}
        self.assertEqual(c.test_str, 'arguments')
        c.arguments = {}
        self.assertEqual(c.test_str, 'environment')
        c.environment = {}
        self.assertEqual(c.test_str, 'persisted')
        c.persisted = {}
        self.assertEqual(c.test_str, 'the default')

    def test_arguments(self):
        parser = argparse.ArgumentParser()
        TestConfig.contribute_to_argparse(parser)

        args = parser.parse_args([])
        c = TestConfig.create_from_arguments(args, environ={})
        self.assertEqual(c.test_str, 'the default')
        self.assertTrue(c.test_true_toggle)
        self.assertFalse(c.test_false_toggle)

        args = parser.parse_args(['--test-str', 'blah', '--test-int', '42'])
        c = TestConfig.create_from_arguments(args, environ={})
        self.assertEqual(c.test_str, 'blah')
        self.assertEqual(c.test_int, 42)

        args = parser.parse_args(['--test-false-toggle'])
        c = TestConfig.create_from_arguments(args, environ={})
        self.assertTrue(c.test_true_toggle)
        self.assertTrue(c.test_false_toggle)

        args = parser.parse_args(['--no-test-true-toggle'])
        c = TestConfig.create_from_arguments(args, environ={})
        self.assertFalse(c.test_true_toggle)
        self.assertFalse(c.test_false_toggle)

    def test_invalid_arguments(self):
        parser = argparse.ArgumentParser()
        TestConfig.contribute_to_argparse(parser)
        with self.assertRaisesRegex(AssertionError, "'test_int' must be an integer"):
            TestConfig.create_from_arguments(parser.parse_args(['--test-int', 'many']), environ={})
        with self.assertRaisesRegex(AssertionError, "'test_positive' must be at least 1"):
            TestConfig.create_from_arguments(parser.parse_args(['--test-positive', '0']), environ={})

    def test_validation(self):
        c = TestConfig()
        with self.assertRaisesRegex(AssertionError, "'test_str' must be a string"):
            c.test_str = 9
        with self.assertRaisesRegex(AssertionError, "'test_int' must be an integer"):
            c.test_int = True
        with self.assertRaisesRegex(AssertionError, "'test_false_toggle' must be a true/false value"):
            c.test_false_toggle = 'yes'
        with self.assertRaises(AssertionError):
            Config(chunk_size=0)

    def test_environment(self):
        c = TestConfig()

        self.assertEqual(c.test_str, 'the default')
        c.set_environment({'SENCRYPT_TEST_STR': 'from environ'})
        self.assertEqual(c.test_str, 'from environ')

        self.assertEqual(c.test_int, 9)
        c.set_environment({'SENCRYPT_TEST_INT': '1', 'SENCRYPT_TEST_FALSE_TOGGLE': 'true'})
        self.assertEqual(c.test_int, 1)
        self.assertTrue(c.test_false_toggle)

    def test_path_expansion(self):
        c = TestConfig()
        self.assertEqual(c.test_path, os.path.expanduser('~/somewhere'))

    def test_persisted(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = os.path.join(temp_dir, 'settings.yml')

            c = TestConfig()
            c.set_persisted(config_path)

            # settings.yml doesn't exist on file system
            self.assertFalse(c.persisted.exists)
            self.assertEqual(c.test_str, 'the default')

            with open(config_path, 'w') as fd:
                fd.write('test_str: original\ntest_false_toggle: true\n')

            c = TestConfig.create_from_arguments(types.SimpleNamespace(config=config_path), environ={})
            self.assertTrue(c.persisted.exists)
            self.assertEqual(c.test_str, 'original')
            self.assertTrue(c.test_false_toggle)

            # setting in runtime overrides config
            self.assertNotIn('test_str', c.runtime)
            c.test_str = 'from runtime'
            self.assertIn('test_str', c.runtime)
            self.assertEqual(c.test_str, 'from runtime')

            # NOT_SET clears the runtime value
            c.test_str = NOT_SET
            self.assertNotIn('test_str', c.runtime)
            self.assertEqual(c.test_str, 'original')

            # environment overrides config file
            c.set_environment({'SENCRYPT_TEST_STR': 'from environ'})
            self.assertEqual(c.test_str, 'from environ')

    def test_persisted_values_are_deserialized(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = os.path.join(temp_dir, 'settings.yml')
            with open(config_path, 'w') as fd:
                fd.write('test_int: "12"\nunknown_setting: 1\n')
            c = TestConfig.create_from_arguments(types.SimpleNamespace(config=config_path), environ={})
            self.assertEqual(c.test_int, 12)

    def test_missing_config_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            with self.assertRaises(ConfigReadError):
                TestConfig.create_from_arguments(
                    types.SimpleNamespace(config=os.path.join(temp_dir, 'missing.yml')), environ={}
                )

    def test_validate_config_file_extension(self):
        c = TestConfig()
        with self.assertRaisesRegex(AssertionError, "configuration file must be in YAML"):
            c.set_persisted('settings.json')
