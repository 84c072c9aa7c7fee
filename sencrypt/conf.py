import os
import re
import sys
import typing
import logging
from argparse import ArgumentParser
from appdirs import user_data_dir, user_config_dir
import yaml
from sencrypt.error import ConfigReadError
from sencrypt.stream import DEFAULT_CHUNK_SIZE, DEFAULT_READ_SIZE

log = logging.getLogger(__name__)


NOT_SET = type('NOT_SET', (object,), {})  # pylint: disable=invalid-name
T = typing.TypeVar('T')


class Setting(typing.Generic[T]):

    def __init__(self, doc: str, default: typing.Optional[T] = None,
                 metavar: typing.Optional[str] = None):
        self.doc = doc
        self.default = default
        self.metavar = metavar

    def __set_name__(self, owner, name):
        self.name = name  # pylint: disable=attribute-defined-outside-init

    @property
    def cli_name(self):
        return f"--{self.name.replace('_', '-')}"

    @property
    def no_cli_name(self):
        return f"--no-{self.name.replace('_', '-')}"

    def __get__(self, obj: typing.Optional['BaseConfig'], owner) -> T:
        if obj is None:
            return self
        for location in obj.search_order:
            if self.name in location:
                return location[self.name]
        return self.default

    def __set__(self, obj: 'BaseConfig', val: typing.Union[T, NOT_SET]):
        if val == NOT_SET:
            obj.runtime.pop(self.name, None)
        else:
            self.validate(val)
            obj.runtime[self.name] = val

    def validate(self, value):
        raise NotImplementedError()

    def deserialize(self, value):  # pylint: disable=no-self-use
        return value

    def contribute_to_argparse(self, parser: ArgumentParser):
        parser.add_argument(
            self.cli_name,
            help=self.doc,
            metavar=self.metavar,
            default=NOT_SET
        )


class String(Setting[str]):
    def validate(self, value):
        assert isinstance(value, str), \
            f"Setting '{self.name}' must be a string."


class Integer(Setting[int]):
    def __init__(self, doc: str, default: typing.Optional[int] = None, minimum: typing.Optional[int] = None,
                 metavar: typing.Optional[str] = None):
        super().__init__(doc, default, metavar)
        self.minimum = minimum

    def validate(self, value):
        assert isinstance(value, int) and not isinstance(value, bool), \
            f"Setting '{self.name}' must be an integer."
        if self.minimum is not None:
            assert value >= self.minimum, \
                f"Setting '{self.name}' must be at least {self.minimum}."

    def deserialize(self, value):
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise AssertionError(f"Setting '{self.name}' must be an integer.")
        self.validate(value)
        return value


class Toggle(Setting[bool]):
    def validate(self, value):
        assert isinstance(value, bool), \
            f"Setting '{self.name}' must be a true/false value."

    def deserialize(self, value):
        if isinstance(value, str):
            return value.lower() in ('1', 'true', 'yes', 'on')
        return bool(value)

    def contribute_to_argparse(self, parser: ArgumentParser):
        parser.add_argument(
            self.cli_name,
            help=self.doc,
            action="store_true",
            default=NOT_SET
        )
        parser.add_argument(
            self.no_cli_name,
            help=f"Opposite of {self.cli_name}",
            dest=self.name,
            action="store_false",
            default=NOT_SET
        )


class Path(String):
    def __init__(self, doc: str, *args, default: str = '', **kwargs):
        super().__init__(doc, default, *args, **kwargs)

    def __get__(self, obj, owner) -> str:
        value = super().__get__(obj, owner)
        if isinstance(value, str):
            return os.path.expanduser(os.path.expandvars(value))
        return value


class EnvironmentAccess:
    PREFIX = 'SENCRYPT_'

    def __init__(self, config: 'BaseConfig', environ: typing.Mapping):
        self.configuration = config
        self.data = {}
        if environ:
            self.load(environ)

    def load(self, environ):
        for setting in self.configuration.get_settings():
            value = environ.get(f'{self.PREFIX}{setting.name.upper()}', NOT_SET)
            if value != NOT_SET:
                self.data[setting.name] = setting.deserialize(value)

    def __contains__(self, item: str):
        return item in self.data

    def __getitem__(self, item: str):
        return self.data[item]


class ArgumentAccess:

    def __init__(self, config: 'BaseConfig', args):
        self.configuration = config
        self.args = {}
        if args:
            self.load(args)

    def load(self, args):
        for setting in self.configuration.get_settings():
            value = getattr(args, setting.name, NOT_SET)
            if value != NOT_SET:
                self.args[setting.name] = setting.deserialize(value)

    def __contains__(self, item: str):
        return item in self.args

    def __getitem__(self, item: str):
        return self.args[item]


class ConfigFileAccess:

    def __init__(self, config: 'BaseConfig', path: str):
        self.configuration = config
        self.path = path
        self.data = {}
        if self.exists:
            self.load()

    @property
    def exists(self):
        return self.path and os.path.exists(self.path)

    def load(self):
        cls = type(self.configuration)
        with open(self.path, 'r') as config_file:
            raw = config_file.read()
        serialized = yaml.safe_load(raw) or {}
        for key, value in serialized.items():
            attr = getattr(cls, key, None)
            if isinstance(attr, Setting):
                self.data[key] = attr.deserialize(value)
            else:
                log.warning("ignoring unknown setting '%s' in %s", key, self.path)

    def __contains__(self, item: str):
        return item in self.data

    def __getitem__(self, item: str):
        return self.data[item]


TBC = typing.TypeVar('TBC', bound='BaseConfig')


class BaseConfig:

    config = Path("Path to configuration file.", metavar='FILE')

    def __init__(self, **kwargs):
        self.runtime = {}      # set internally or by the caller
        self.arguments = {}    # from command line arguments
        self.environment = {}  # from environment variables
        self.persisted = {}    # from config file
        for key, value in kwargs.items():
            setattr(self, key, value)

    @property
    def search_order(self):
        return [
            self.runtime,
            self.arguments,
            self.environment,
            self.persisted
        ]

    @classmethod
    def get_settings(cls):
        for attr in dir(cls):
            setting = getattr(cls, attr)
            if isinstance(setting, Setting):
                yield setting

    @property
    def settings(self):
        return self.get_settings()

    @property
    def settings_dict(self):
        return {
            setting.name: getattr(self, setting.name) for setting in self.settings
        }

    @classmethod
    def create_from_arguments(cls: typing.Type[TBC], args, environ=None) -> TBC:
        conf = cls()
        conf.set_arguments(args)
        conf.set_environment(environ)
        conf.set_persisted(required='config' in conf.arguments)
        return conf

    @classmethod
    def contribute_to_argparse(cls, parser: ArgumentParser):
        for setting in cls.get_settings():
            setting.contribute_to_argparse(parser)

    def set_arguments(self, args):
        self.arguments = ArgumentAccess(self, args)

    def set_environment(self, environ=None):
        self.environment = EnvironmentAccess(self, os.environ if environ is None else environ)

    def set_persisted(self, config_file_path=None, required=False):
        if config_file_path is None:
            config_file_path = self.config

        if not config_file_path:
            return

        ext = os.path.splitext(config_file_path)[1]
        assert ext in ('.yml', '.yaml'),\
            f"File extension '{ext}' is not supported, " \
            f"configuration file must be in YAML (.yaml)."

        if required and not os.path.isfile(config_file_path):
            raise ConfigReadError(config_file_path)
        self.persisted = ConfigFileAccess(self, config_file_path)


class Config(BaseConfig):
    config = Path("Path to configuration file, defaults to 'sencrypt.yml' in the data directory.", metavar='FILE')

    # directories
    data_dir = Path("Directory path for the configuration file, the log and local transfers.", metavar='DIR')
    download_dir = Path("Directory path to place received files.", metavar='DIR')
    storage_dir = Path(
        "Directory path for the local chunk store, defaults to 'transfers' in the data directory.", metavar='DIR'
    )

    # remote storage
    storage_url = String(
        "Base URL of a transmission server to store chunks on instead of the local chunk store.", '',
        metavar='URL'
    )

    # transfers
    chunk_size = Integer("Size in bytes of the plaintext chunks a file is split into.", DEFAULT_CHUNK_SIZE, 1)
    read_size = Integer("Size in bytes of each read from a file being sent.", DEFAULT_READ_SIZE, 1)
    chunk_attempts = Integer("Attempts at uploading or downloading a chunk before a transfer fails.", 3, 1)
    rsa_key_size = Integer("Modulus size in bits of keys created by 'keygen'.", 4096, 2048)
    delete_after_receive = Toggle(
        "Delete a transfer from the chunk store once 'receive' has decrypted it.", False
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.set_default_paths()

    def set_default_paths(self):
        cls = type(self)
        cls.data_dir.default, cls.download_dir.default = get_directories()

    def set_persisted(self, config_file_path=None, required=False):
        if config_file_path is None and not self.config:
            config_file_path = self.default_config_path
        super().set_persisted(config_file_path, required)

    @property
    def default_config_path(self) -> str:
        return os.path.join(self.data_dir, 'sencrypt.yml')

    @property
    def transfer_storage_dir(self) -> str:
        return self.storage_dir or os.path.join(self.data_dir, 'transfers')

    @property
    def log_file_path(self):
        return os.path.join(self.data_dir, 'sencrypt.log')


def get_download_directory() -> str:
    download_dir = None
    if 'linux' in sys.platform.lower():
        try:
            with open(os.path.join(user_config_dir(), 'user-dirs.dirs'), 'r') as xdg:
                down_dir = re.search(r'XDG_DOWNLOAD_DIR=(.+)', xdg.read())
            if down_dir:
                down_dir = re.sub(r'\$HOME', os.getenv('HOME') or os.path.expanduser("~/"), down_dir.group(1))
                download_dir = re.sub('\"', '', down_dir)
        except OSError:
            download_dir = os.getenv('XDG_DOWNLOAD_DIR')
    return download_dir or os.path.expanduser('~/Downloads')


def get_directories() -> typing.Tuple[str, str]:
    return user_data_dir('sencrypt'), get_download_directory()
