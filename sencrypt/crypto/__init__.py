SESSION_KEY_SIZE = 32
