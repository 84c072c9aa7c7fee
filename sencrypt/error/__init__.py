from .base import BaseError


class UserInputError(BaseError):
    """
    User input errors.
    """


class InputValueError(UserInputError, ValueError):
    """
    Invalid argument value provided to command.
    """


class MissingTransferFileError(InputValueError):

    def __init__(self, file_path):
        self.file_path = file_path
        super().__init__(f"File does not exist: {file_path}")


class ConfigurationError(BaseError):
    """
    Configuration errors.
    """


class ConfigReadError(ConfigurationError):
    """
    Can't open the config file user provided via command line args.
    """

    def __init__(self, path):
        self.path = path
        super().__init__(f"Cannot find provided configuration file '{path}'.")


class KeyCodecError(BaseError):
    """
    **Keys**
    """


class UnsupportedFormatError(KeyCodecError):

    def __init__(self, message="Unrecognized key encoding."):
        self.message = message
        super().__init__(f"{message}")


class UnsupportedKeyTypeError(KeyCodecError):

    def __init__(self, key_type):
        self.key_type = key_type
        super().__init__(f"Unsupported key type '{key_type}', only RSA keys are supported.")


class EncryptedKeyUnsupportedError(KeyCodecError):
    """
    Passphrase protected keys have to be decrypted with ssh-keygen first.
    """

    def __init__(self, cipher):
        self.cipher = cipher
        super().__init__(f"Key is encrypted with '{cipher}', passphrase protected keys are not supported.")


class MalformedKeyError(KeyCodecError):

    def __init__(self, message):
        self.message = message
        super().__init__(f"Malformed key: {message}")


class KeyIntegrityError(MalformedKeyError):

    def __init__(self):
        super().__init__("check integers do not match")


class KeyTooLargeError(MalformedKeyError):

    def __init__(self, size):
        self.size = size
        super().__init__(f"private key body of {size} bytes does not fit a 16 bit length field")


class CryptoError(BaseError):
    """
    **Encryption**
    """


class KeyTypeMismatchError(CryptoError):

    def __init__(self, expected, received):
        self.expected = expected
        self.received = received
        super().__init__(f"Expected an RSA {expected} key, got {received}.")


class DecryptionFailedError(CryptoError):
    """
    Deliberately says nothing about which check failed.
    """

    def __init__(self):
        super().__init__("Failed to unwrap the session key.")


class AuthenticationFailedError(CryptoError):

    def __init__(self, index):
        self.index = index
        super().__init__(f"Chunk {index} failed authentication, it is corrupted or was encrypted with another key.")


class TransferError(BaseError):
    """
    **Transfers**
    """


class TransferFailedError(TransferError):

    def __init__(self, index, cause):
        self.index = index
        self.cause = cause
        super().__init__(f"Transfer failed at chunk {index}: {cause}")


class TransferCancelledError(TransferError):

    def __init__(self):
        super().__init__("Transfer was cancelled.")


class TransferIncompleteError(TransferError):

    def __init__(self, transfer_id, observed, expected):
        self.transfer_id = transfer_id
        self.observed = observed
        self.expected = expected
        super().__init__(f"Transfer {transfer_id} has {observed} of {expected} chunks uploaded.")


class ChunkLengthMismatchError(TransferError):

    def __init__(self, index, expected, actual):
        self.index = index
        self.expected = expected
        self.actual = actual
        super().__init__(f"Chunk {index} decrypted to {actual} bytes, expected {expected}.")


class InvalidTransferDescriptorError(TransferError):

    def __init__(self, message):
        self.message = message
        super().__init__(f"{message}")


class StorageError(BaseError):
    """
    **Storage**
    """


class ChunkStorageError(StorageError):

    def __init__(self, message):
        self.message = message
        super().__init__(f"{message}")


class TransferNotFoundError(StorageError):

    def __init__(self, transfer_id):
        self.transfer_id = transfer_id
        super().__init__(f"Transfer {transfer_id} not found.")


class ChunkNotFoundError(StorageError):

    def __init__(self, transfer_id, index):
        self.transfer_id = transfer_id
        self.index = index
        super().__init__(f"Chunk {index} of transfer {transfer_id} not found.")


class ChunkIndexOutOfRangeError(StorageError):

    def __init__(self, index, expected):
        self.index = index
        self.expected = expected
        super().__init__(f"Chunk index {index} is outside of a transfer with {expected} chunks.")
