import os
import sys
import asyncio
import logging
import logging.handlers
import pathlib
import argparse

from sencrypt import __name__ as sencrypt_name, __version__ as sencrypt_version
from sencrypt.conf import Config
from sencrypt.error import BaseError, KeyTypeMismatchError
from sencrypt.crypto.provider import default_provider
from sencrypt.keys import codec
from sencrypt.keys.material import RSAPublicKey, RSAPrivateKey, describe
from sencrypt.storage import DiskChunkStore, HTTPChunkStore
from sencrypt.stream.engine import TransferEngine, get_next_available_file_name

log = logging.getLogger(sencrypt_name)


def get_argument_parser():
    root = argparse.ArgumentParser(
        sencrypt_name, description='End-to-end encrypted file transfers through an untrusted chunk store.',
        allow_abbrev=False,
    )
    root.add_argument(
        '-v', '--version', dest='cli_version', action="store_true",
        help='Show sencrypt version and exit.'
    )
    root.add_argument(
        '--quiet', dest='quiet', action="store_true",
        help='Disable all console logging.'
    )
    root.add_argument(
        '--verbose', dest='verbose', action="store_true",
        help='Enable debug output.'
    )
    root.set_defaults(command=None)
    Config.contribute_to_argparse(root)
    sub = root.add_subparsers(metavar='COMMAND')

    keygen = sub.add_parser('keygen', help='Create an RSA key pair in PATH and PATH.pub.')
    keygen.add_argument('path', metavar='PATH')
    keygen.set_defaults(command='keygen')

    fingerprint = sub.add_parser('fingerprint', help='Show the SHA256 fingerprint of a public or private key.')
    fingerprint.add_argument('key_file', metavar='KEYFILE')
    fingerprint.set_defaults(command='fingerprint')

    send = sub.add_parser('send', help='Encrypt and upload a file, prints the transfer id.')
    send.add_argument('file_path', metavar='FILE')
    send.add_argument('--key', dest='key_file', required=True, metavar='PUBKEY', help="Receiver's public key.")
    send.add_argument('--receiver', dest='receiver_id', default='', metavar='ID', help='Receiver id.')
    send.set_defaults(command='send')

    receive = sub.add_parser('receive', help='Download and decrypt a transfer.')
    receive.add_argument('transfer_id', metavar='TRANSFER_ID')
    receive.add_argument('--key', dest='key_file', required=True, metavar='PRIVKEY', help='Your private key.')
    receive.add_argument('--output', dest='output', metavar='PATH',
                         help='File to write, defaults to the sent file name in the download directory.')
    receive.set_defaults(command='receive')

    status = sub.add_parser('status', help='Show how many chunks of a transfer are stored.')
    status.add_argument('transfer_id', metavar='TRANSFER_ID')
    status.set_defaults(command='status')

    delete = sub.add_parser('delete', help='Delete a transfer and its chunks.')
    delete.add_argument('transfer_id', metavar='TRANSFER_ID')
    delete.set_defaults(command='delete')

    return root


def ensure_directory_exists(path: str):
    if not os.path.isdir(path):
        pathlib.Path(path).mkdir(parents=True, exist_ok=True)


def setup_logging(conf: Config, quiet: bool = False, verbose: bool = False):
    default_formatter = logging.Formatter("%(asctime)s %(levelname)-8s %(name)s:%(lineno)d: %(message)s")
    file_handler = logging.handlers.RotatingFileHandler(
        conf.log_file_path, maxBytes=2097152, backupCount=5
    )
    file_handler.setFormatter(default_formatter)
    log.addHandler(file_handler)
    handlers = [file_handler]

    if not quiet:
        handler = logging.StreamHandler()
        handler.setFormatter(default_formatter)
        log.addHandler(handler)
        handlers.append(handler)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)

    if verbose:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.INFO)
    return handlers


def get_store(loop: asyncio.AbstractEventLoop, conf: Config):
    if conf.storage_url:
        return HTTPChunkStore(conf.storage_url)
    ensure_directory_exists(conf.transfer_storage_dir)
    return DiskChunkStore(loop, conf.transfer_storage_dir)


def keygen(conf: Config, path: str):
    public_path = f"{path}.pub"
    for existing in (path, public_path):
        if os.path.exists(existing):
            raise FileExistsError(f"{existing} already exists")
    key = default_provider.generate_rsa_key(conf.rsa_key_size)
    with open(os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600), 'wb') as private_file:
        private_file.write(default_provider.export_openssh_private(key))
    with open(public_path, 'w') as public_file:
        public_file.write(codec.format_ssh_public(key.public_key) + '\n')
    print(f"{codec.fingerprint(key)} {public_path}")


def load_key(path: str, expected_type: type, expected: str):
    key = codec.decode_file(path)
    if expected_type is RSAPublicKey and isinstance(key, RSAPrivateKey):
        return key.public_key
    if not isinstance(key, expected_type):
        raise KeyTypeMismatchError(expected, describe(key))
    return key


async def execute_command(conf: Config, args) -> int:
    loop = asyncio.get_event_loop()
    store = get_store(loop, conf)
    try:
        if args.command == 'send':
            engine = TransferEngine(loop, conf, store)
            descriptor = await engine.send_file(
                args.file_path, load_key(args.key_file, RSAPublicKey, 'public'), args.receiver_id
            )
            if descriptor is None:
                return 1
            print(descriptor.transfer_id)
        elif args.command == 'receive':
            engine = TransferEngine(loop, conf, store)
            output = args.output
            if not output:
                descriptor = await store.get_descriptor(args.transfer_id)
                ensure_directory_exists(conf.download_dir)
                output = os.path.join(conf.download_dir, await get_next_available_file_name(
                    loop, conf.download_dir, descriptor.suggested_file_name
                ))
            descriptor = await engine.receive(
                args.transfer_id, load_key(args.key_file, RSAPrivateKey, 'private'), output
            )
            if descriptor is None:
                return 1
            print(output)
            if conf.delete_after_receive:
                await store.delete_transfer(args.transfer_id)
                log.info("deleted received transfer %s", args.transfer_id)
        elif args.command == 'status':
            descriptor = await store.get_descriptor(args.transfer_id)
            observed = await store.count(args.transfer_id)
            print(f"{args.transfer_id}: {observed}/{descriptor.expected_chunks} chunks, "
                  f"{descriptor.file_size} bytes, {descriptor.suggested_file_name}")
        elif args.command == 'delete':
            await store.delete_transfer(args.transfer_id)
            print(f"deleted {args.transfer_id}")
    finally:
        await store.close()
    return 0


def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    parser = get_argument_parser()
    args = parser.parse_args(argv)

    if args.cli_version:
        print(f"{sencrypt_name} {sencrypt_version}")
        return 0
    if args.command is None:
        parser.print_help()
        return 0

    try:
        conf = Config.create_from_arguments(args)
        ensure_directory_exists(conf.data_dir)
        handlers = setup_logging(conf, args.quiet, args.verbose)
        log.debug('Final Settings: %s', conf.settings_dict)
        try:
            if args.command == 'keygen':
                keygen(conf, args.path)
                return 0
            if args.command == 'fingerprint':
                print(codec.fingerprint(codec.decode_file(args.key_file)))
                return 0
            loop = asyncio.new_event_loop()
            try:
                return loop.run_until_complete(execute_command(conf, args))
            finally:
                loop.close()
        finally:
            for handler in handlers:
                log.removeHandler(handler)
                handler.close()
    except (BaseError, AssertionError, OSError) as err:
        print(f"error: {err}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
