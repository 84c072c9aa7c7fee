import typing


class RSAPublicKey(typing.NamedTuple):
    n: int
    e: int

    @property
    def key_size(self) -> int:
        return self.n.bit_length()


class RSAPrivateKey(typing.NamedTuple):
    n: int
    e: int
    d: int
    p: int
    q: int
    dp: int
    dq: int
    qinv: int

    @property
    def key_size(self) -> int:
        return self.n.bit_length()

    @property
    def public_key(self) -> RSAPublicKey:
        return RSAPublicKey(self.n, self.e)

    def __repr__(self):
        return f"RSAPrivateKey(<{self.key_size} bit>)"

    __str__ = __repr__


KeyMaterial = typing.Union[RSAPublicKey, RSAPrivateKey]


def describe(key: KeyMaterial) -> str:
    if isinstance(key, RSAPrivateKey):
        return "private"
    if isinstance(key, RSAPublicKey):
        return "public"
    return type(key).__name__
