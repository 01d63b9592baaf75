from logging.config import fileConfig

from alembic import context
from sqlmodel import SQLModel

from coventure.database import backend_engine

import coventure.models.profile  # noqa
import coventure.models.project  # noqa
import coventure.models.project_application  # noqa
import coventure.models.project_member  # noqa
import coventure.models.chat_room  # noqa
import coventure.models.chat_message  # noqa
import coventure.models.auth_session  # noqa

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

# La tabla de sesiones vive solo en el sqlite local
LOCAL_TABLES = {"auth_sessions"}


def include_object(object, name, type_, reflected, compare_to):
    if type_ == "table" and name in LOCAL_TABLES:
        return False
    return True


def run_migrations_offline() -> None:
    url = backend_engine().url.render_as_string(hide_password=False)
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    with backend_engine().connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            include_object=include_object,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
