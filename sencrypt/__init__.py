__name__ = "sencrypt"
__version__ = "0.1.0"
