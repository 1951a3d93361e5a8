"""Fixed values shared across stackprovisioner services."""

OS_RELEASE_PATH = "/etc/os-release"

DEFAULT_FILE_MODE = 0o644
PRIVATE_FILE_MODE = 0o600
SUDOERS_FILE_MODE = 0o440

BASE_PACKAGES = [
    "curl",
    "wget",
    "apt-transport-https",
    "software-properties-common",
    "gpg",
    "lsb-release",
    "ca-certificates",
    "unzip",
    "git",
    "build-essential",
]

DOTNET_INSTALL_SCRIPT_URL = "https://dot.net/v1/dotnet-install.sh"
DOTNET_CHANNEL = "LTS"
DOTNET_REPO_PACKAGES = ["dotnet-sdk-8.0", "aspnetcore-runtime-8.0"]
DOTNET_MIN_MAJOR = 8
MICROSOFT_PACKAGES_BASE_URL = "https://packages.microsoft.com/config"
FSHARP_TEMPLATES_PACKAGE = "Microsoft.FSharp.Templates"

DOTNET_GLOBAL_TOOLS = ["fsautocomplete", "fantomas", "fsharp-analyzers"]
GIRAFFE_TEMPLATE_NAME = "giraffe"
GIRAFFE_TEMPLATE_PACKAGE = "giraffe-template::*"

POSTGRES_VERSION = "17"
POSTGRES_HOST = "localhost"
POSTGRES_PORT = 5432
POSTGRES_ADMIN_USER = "postgres"
POSTGRES_KEY_URL = "https://www.postgresql.org/media/keys/ACCC4CF8.asc"
POSTGRES_KEYRING = "/usr/share/keyrings/postgresql-keyring.gpg"
POSTGRES_SOURCE_FILE = "/etc/apt/sources.list.d/pgdg.list"
POSTGRES_APT_URL = "http://apt.postgresql.org/pub/repos/apt/"
DEFAULT_DATABASE_NAME = "testdb"

PASSWORD_LENGTH = 32
PASSWORD_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ" "abcdefghijklmnopqrstuvwxyz" "0123456789" "!@#$%^&*"
)

CREDENTIALS_FILE_NAME = ".fsharp-aspnet-credentials"
PGPASS_FILE_NAME = ".pgpass"
TEST_PROJECT_DIR_NAME = "fsharp-aspnet-test"
GIRAFFE_PROJECT_NAME = "GiraffeTestApp"
WEBAPI_PROJECT_NAME = "TestApp"

ASPNET_PORT = 5000
PRODUCTION_ENVIRONMENT_FILE = "/etc/environment"
PRODUCTION_ENVIRONMENT = {
    "ASPNETCORE_ENVIRONMENT": "Production",
    "DOTNET_ENVIRONMENT": "Production",
    "ASPNETCORE_URLS": f"http://0.0.0.0:{ASPNET_PORT}",
}

NGINX_SITE_FILE = "/etc/nginx/sites-available/aspnet-app"
NGINX_SITES_ENABLED_DIR = "/etc/nginx/sites-enabled/"
LIMITS_FILE = "/etc/security/limits.d/dotnet.conf"
SYSCTL_FILE = "/etc/sysctl.d/99-dotnet.conf"
WEB_GROUP = "www-data"

NGINX_SITE_CONTENT = f"""server {{
    listen 80;
    server_name _;
    location / {{
        proxy_pass http://127.0.0.1:{ASPNET_PORT};
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection keep-alive;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_cache_bypass $http_upgrade;
    }}
}}
"""

LIMITS_CONTENT = """# Limits for .NET applications
* soft nofile 65536
* hard nofile 65536
* soft nproc 32768
* hard nproc 32768
"""

SYSCTL_CONTENT = """# Network tuning for ASP.NET Core
net.core.somaxconn = 65536
net.ipv4.tcp_tw_reuse = 1
net.ipv4.ip_local_port_range = 1024 65535
"""

PG_HBA_MARKER = "# stackprovisioner: F#/ASP.NET Core development access"
