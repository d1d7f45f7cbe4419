# treehole

This is the model layer of an anonymous bulletin board. Users post *holes*
(threads) in *divisions*. Each hole holds numbered *floors* (replies) and
carries *tags*. The package also covers favourite groups, subscriptions,
reports, punishments and notifications. It stores data through SQLAlchemy 2
and keeps cached views in a small in-process key/value cache.

## Installation

```
pip install .
pip install ".[test]"   # with pytest
```

## Modules

- `treehole.utils` holds the following:
  - `Settings`, a dataclass of runtime options such as `mode`,
    `hole_floor_size`, `notification_url`, `valid_image_url`,
    `url_hostname_whitelist` and `admin_only_tag_ids`.
  - `HttpError`, an exception that carries `code` and `message`, plus the
    helpers that build one: `forbidden` (403), `not_found` (404),
    `bad_request` (400) and `internal_server_error` (500).
  - The helpers `strip_content`, `intersect`, `difference`,
    `reg_text_to_int_list`, `order_in_given_order`, `models_to_ids`, `my_log`
    and `request_log`, and the `Role` enum.
- `treehole.names` provides `NameGenerator`. It hands out anonymous names
  from a list you supply, avoids names that are already taken in a hole, and
  can map names to a "fuzzed" form. It also provides `generate_random_code`.
- `treehole.cache` provides `Cache`, which stores values as JSON with an
  optional expiry in seconds or as a `timedelta`; zero means the value never
  expires. It also provides the module-wide `set_cache`, `get_cache` and
  `delete_cache`.
- `treehole.sensitive` checks content:
  - `find_images_in_markdown` and `check_valid_url` deal with image links.
    They raise `InvalidImageHostError`, `ImageLinkTextOnlyError` or
    `UrlParsingError`.
  - `contains_unsafe_url` reports links whose host is not whitelisted.
  - `remove_id_repr` strips `#n` and `##n` references.
  - `check_sensitive` runs all of these and then passes the text and each
    image to a *checker* that you supply. A checker is any callable
    `(content, CheckType, id) -> SensitiveResult`.
- `treehole.db` holds the declarative `Base` and the small tables `AdminLog`
  (with `AdminLogType`), `FloorHistory`, `FloorLike`, `HoleTag` and
  `UrlHostnameWhitelist`. It also has `create_admin_log` and
  `load_url_whitelist`.
- `treehole.anonyname` holds `AnonynameMapping`, `new_anonyname` and
  `find_or_generate_anonyname`.
- `treehole.users` holds `User`, `UserConfig`, `FavoriteGroup` and
  `UserFavorite`. Its functions are `load_user`, `get_current_user`,
  `check_default_favorite_group` and `user_get_favorite_groups`, plus
  `add_user_favorite_group`, `delete_user_favorite_group` and
  `modify_user_favorite_group`.
- `treehole.subscriptions` holds `UserSubscription`,
  `user_get_subscription_data` and `add_user_subscription`.
- `treehole.punishments` holds `Punishment` and `create_punishment`, which
  bans a user from a division.
- `treehole.messages` holds `Message`, `MessageUser`, `MessageType` and
  `Notification` (its `send` method), plus `merge_notifications`, `send_all`
  and `clean_notification_description`. It also has `AdminList`, a shuffled
  rotation of admin ids.
- `treehole.tags` holds `Tag`, `find_or_create_tags`, `update_tag_cache` and
  `preprocess_tags`.
- `treehole.mentions` holds `FloorMention` and `parse_mention_ids`. Mentions
  are written `#123` for a hole and `##456` for a floor.
- `treehole.floors` holds `Floor`, with `set_defaults`, `backup`,
  `modify_like` and the `send_*` notifications. It also has
  `load_floor_mentions`, `preprocess_floors`, `floor_query` and
  `search_floors`.
- `treehole.holes` holds `Hole`, `Division`, `holes_exist`, `load_floors`,
  `load_tags`, `update_hole_cache`, `preprocess_holes` and `hole_query`, plus
  `create_hole`, `create_floor` and `preprocess_divisions`.
- `treehole.favorites` holds `is_favorite_group_exist`,
  `modify_user_favorite`, `add_user_favorite`, `user_get_favorite_data`,
  `user_get_favorite_data_by_group`, `delete_user_favorite` and
  `move_user_favorite`.
- `treehole.reports` holds `Report`, `ReportPunishment`, `create_report` and
  `create_report_punishment`.

The functions that take a `session` add and flush rows but never commit.
Committing or rolling back is left to the caller.

## Examples

```python
from treehole.utils import strip_content
from treehole.sensitive import find_images_in_markdown

strip_content("a long piece of text", 6)          # "a long"

urls, text = find_images_in_markdown(
    '![cat](https://example.com/cat.png "my cat")',
    valid_hosts=["example.com"],
)
# urls == ["https://example.com/cat.png"], text == "cat my cat"
```

Errors meant for clients are raised as `HttpError`:

```python
from treehole.utils import HttpError, forbidden

try:
    raise forbidden("默认收藏夹不可删除")
except HttpError as err:
    print(err.code, err.message)   # 403 默认收藏夹不可删除
```

A short session with an in-memory SQLite database:

```python
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from treehole.db import Base
from treehole import holes, punishments, reports  # import the models so their tables exist
from treehole.users import load_user, add_user_favorite_group, user_get_favorite_groups

engine = create_engine("sqlite://")
Base.metadata.create_all(engine)

with Session(engine) as session:
    load_user(session, 42)                        # creates the user and the default group
    add_user_favorite_group(session, 42, "reading")
    groups = user_get_favorite_groups(session, 42, "favorite_group_id")
    print([g.favorite_group_id for g in groups])  # [0, 1]
    session.commit()
```

## What this package does not do

- It has no HTTP server, no routes and no command-line program. It is a
  library to build those on.
- It does not call a content-moderation service. `check_sensitive` only
  applies its own link and image rules and leaves every verdict to the
  checker callable you pass in.
- `search_floors` searches with a database `LIKE` query. There is no
  full-text search index.
- The cache lives in process memory only.
- Notifications are stored as `Message` rows. They are also POSTed to
  `{notification_url}/messages` when `Settings.notification_url` is set, and
  that is the only outgoing push.

## Running the tests

```
pytest
```