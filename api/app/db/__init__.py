from .pool import init_db_pool, close_db_pool, get_connection  # noqa: F401
from .schema import init_db  # noqa: F401
from .repos import (  # noqa: F401
    upsert_repos,
    get_repo,
    select_uncategorized_repos,
    count_uncategorized_repos,
    record_readme_summary,
)
from .lists import (  # noqa: F401
    SQLiteListStore,
    list_lists,
    get_list,
    create_list,
    delete_list,
    add_repo_to_list,
    remove_repo_from_list,
    list_used_colors,
)
