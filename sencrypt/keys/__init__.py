SSH_RSA = "ssh-rsa"
OPENSSH_MAGIC = b"openssh-key-v1\x00"
