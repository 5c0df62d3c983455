APP_NAME = "DCS-SC Bridge"
APP_VERSION = "1.0"
