"""Initial schema: catalog, visibility rules, exclusion cache and user annotations.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID = sa.String(64)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime),
        sa.Column('deleted_at', sa.DateTime),
    ]


def _junction(name: str, left: tuple[str, str], right: tuple[str, str], *extra: sa.Column) -> None:
    """Two-column join table with a composite key and an index on the right side."""
    left_col, left_table = left
    right_col, right_table = right
    op.create_table(
        name,
        sa.Column(left_col, ID, sa.ForeignKey(f'{left_table}.id', ondelete='CASCADE'), primary_key=True),
        sa.Column(right_col, ID, sa.ForeignKey(f'{right_table}.id', ondelete='CASCADE'), primary_key=True),
        *extra,
    )
    short = right_col.removesuffix('_id')
    op.create_index(f'idx_{name}_{short}', name, [right_col])


def upgrade() -> None:
    # ============ Catalog ============
    op.create_table(
        'studios',
        sa.Column('id', ID, primary_key=True),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('parent_id', ID, sa.ForeignKey('studios.id', ondelete='SET NULL')),
        sa.Column('details', sa.Text),
        sa.Column('url', sa.String(500)),
        sa.Column('favorite', sa.Boolean, server_default=sa.false()),
        sa.Column('rating100', sa.Integer),
        sa.Column('scene_count', sa.Integer, server_default='0'),
        sa.Column('image_count', sa.Integer, server_default='0'),
        *_timestamps(),
    )
    op.create_index('idx_studios_name', 'studios', ['name'])
    op.create_index('idx_studios_parent', 'studios', ['parent_id'])
    op.create_index('idx_studios_deleted', 'studios', ['deleted_at'])

    op.create_table(
        'scenes',
        sa.Column('id', ID, primary_key=True),
        sa.Column('title', sa.String(500)),
        sa.Column('code', sa.String(100)),
        sa.Column('details', sa.Text),
        sa.Column('director', sa.String(200)),
        sa.Column('date', sa.Date),
        sa.Column('studio_id', ID, sa.ForeignKey('studios.id', ondelete='SET NULL')),
        sa.Column('rating100', sa.Integer),
        sa.Column('organized', sa.Boolean, server_default=sa.false()),
        sa.Column('file_path', sa.String(1000)),
        sa.Column('duration', sa.Float),
        sa.Column('filesize', sa.BigInteger),
        sa.Column('bitrate', sa.Integer),
        sa.Column('framerate', sa.Float),
        sa.Column('width', sa.Integer),
        sa.Column('height', sa.Integer),
        sa.Column('video_codec', sa.String(50)),
        sa.Column('audio_codec', sa.String(50)),
        *_timestamps(),
    )
    op.create_index('idx_scenes_studio', 'scenes', ['studio_id'])
    op.create_index('idx_scenes_deleted', 'scenes', ['deleted_at'])
    op.create_index('idx_scenes_created', 'scenes', ['created_at'])
    op.create_index('idx_scenes_date', 'scenes', ['date'])

    op.create_table(
        'performers',
        sa.Column('id', ID, primary_key=True),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('disambiguation', sa.String(300)),
        sa.Column('aliases', sa.Text),
        sa.Column('gender', sa.String(30)),
        sa.Column('birthdate', sa.Date),
        sa.Column('country', sa.String(100)),
        sa.Column('ethnicity', sa.String(100)),
        sa.Column('height_cm', sa.Integer),
        sa.Column('favorite', sa.Boolean, server_default=sa.false()),
        sa.Column('rating100', sa.Integer),
        sa.Column('scene_count', sa.Integer, server_default='0'),
        sa.Column('image_count', sa.Integer, server_default='0'),
        sa.Column('gallery_count', sa.Integer, server_default='0'),
        *_timestamps(),
    )
    op.create_index('idx_performers_name', 'performers', ['name'])
    op.create_index('idx_performers_deleted', 'performers', ['deleted_at'])

    op.create_table(
        'tags',
        sa.Column('id', ID, primary_key=True),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('aliases', sa.Text),
        sa.Column('favorite', sa.Boolean, server_default=sa.false()),
        sa.Column('scene_count', sa.Integer, server_default='0'),
        sa.Column('performer_count', sa.Integer, server_default='0'),
        *_timestamps(),
    )
    op.create_index('idx_tags_name', 'tags', ['name'])
    op.create_index('idx_tags_deleted', 'tags', ['deleted_at'])

    op.create_table(
        'tag_parents',
        sa.Column('tag_id', ID, sa.ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('parent_id', ID, sa.ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_index('idx_tag_parents_parent_id', 'tag_parents', ['parent_id'])

    op.create_table(
        'catalog_groups',
        sa.Column('id', ID, primary_key=True),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('aliases', sa.Text),
        sa.Column('date', sa.Date),
        sa.Column('duration', sa.Integer),
        sa.Column('director', sa.String(200)),
        sa.Column('synopsis', sa.Text),
        sa.Column('studio_id', ID, sa.ForeignKey('studios.id', ondelete='SET NULL')),
        sa.Column('rating100', sa.Integer),
        sa.Column('scene_count', sa.Integer, server_default='0'),
        *_timestamps(),
    )
    op.create_index('idx_groups_name', 'catalog_groups', ['name'])
    op.create_index('idx_groups_deleted', 'catalog_groups', ['deleted_at'])

    op.create_table(
        'galleries',
        sa.Column('id', ID, primary_key=True),
        sa.Column('title', sa.String(500)),
        sa.Column('code', sa.String(100)),
        sa.Column('date', sa.Date),
        sa.Column('details', sa.Text),
        sa.Column('photographer', sa.String(200)),
        sa.Column('studio_id', ID, sa.ForeignKey('studios.id', ondelete='SET NULL')),
        sa.Column('folder_path', sa.String(1000)),
        sa.Column('rating100', sa.Integer),
        sa.Column('image_count', sa.Integer, server_default='0'),
        *_timestamps(),
    )
    op.create_index('idx_galleries_studio', 'galleries', ['studio_id'])
    op.create_index('idx_galleries_deleted', 'galleries', ['deleted_at'])

    op.create_table(
        'images',
        sa.Column('id', ID, primary_key=True),
        sa.Column('title', sa.String(500)),
        sa.Column('code', sa.String(100)),
        sa.Column('date', sa.Date),
        sa.Column('details', sa.Text),
        sa.Column('studio_id', ID, sa.ForeignKey('studios.id', ondelete='SET NULL')),
        sa.Column('rating100', sa.Integer),
        sa.Column('organized', sa.Boolean, server_default=sa.false()),
        sa.Column('file_path', sa.String(1000)),
        sa.Column('filesize', sa.BigInteger),
        sa.Column('width', sa.Integer),
        sa.Column('height', sa.Integer),
        *_timestamps(),
    )
    op.create_index('idx_images_studio', 'images', ['studio_id'])
    op.create_index('idx_images_deleted', 'images', ['deleted_at'])
    op.create_index('idx_images_created', 'images', ['created_at'])

    # ============ Catalog join tables ============
    _junction('scene_performers', ('scene_id', 'scenes'), ('performer_id', 'performers'))
    _junction('scene_tags', ('scene_id', 'scenes'), ('tag_id', 'tags'))
    _junction('scene_inherited_tags', ('scene_id', 'scenes'), ('tag_id', 'tags'))
    _junction('scene_groups', ('scene_id', 'scenes'), ('group_id', 'catalog_groups'),
              sa.Column('scene_index', sa.Integer))
    _junction('scene_galleries', ('scene_id', 'scenes'), ('gallery_id', 'galleries'))
    _junction('image_performers', ('image_id', 'images'), ('performer_id', 'performers'))
    _junction('image_tags', ('image_id', 'images'), ('tag_id', 'tags'))
    _junction('image_galleries', ('image_id', 'images'), ('gallery_id', 'galleries'))
    _junction('gallery_performers', ('gallery_id', 'galleries'), ('performer_id', 'performers'))
    _junction('gallery_tags', ('gallery_id', 'galleries'), ('tag_id', 'tags'))
    _junction('performer_tags', ('performer_id', 'performers'), ('tag_id', 'tags'))
    _junction('studio_tags', ('studio_id', 'studios'), ('tag_id', 'tags'))
    _junction('group_tags', ('group_id', 'catalog_groups'), ('tag_id', 'tags'))

    # ============ Users ============
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(100), nullable=False, unique=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='USER'),
        sa.Column('created_at', sa.DateTime),
    )

    # ============ Visibility rules ============
    op.create_table(
        'user_content_restrictions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('mode', sa.String(10), nullable=False),
        sa.Column('created_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime),
        sa.UniqueConstraint('user_id', 'entity_type', name='uq_restriction_user_type'),
    )
    op.create_index('idx_restrictions_user', 'user_content_restrictions', ['user_id'])

    op.create_table(
        'user_content_restriction_entities',
        sa.Column(
            'restriction_id', sa.Integer,
            sa.ForeignKey('user_content_restrictions.id', ondelete='CASCADE'), primary_key=True,
        ),
        sa.Column('entity_id', ID, primary_key=True),
    )

    op.create_table(
        'user_hidden_entities',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', ID, nullable=False),
        sa.Column('hidden_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('user_id', 'entity_type', 'entity_id', name='uq_hidden_user_entity'),
    )
    op.create_index('idx_hidden_user_hidden_at', 'user_hidden_entities', ['user_id', 'hidden_at'])

    # ============ Visibility cache ============
    op.create_table(
        'user_excluded_entities',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer, nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', ID, nullable=False),
        sa.Column('reason', sa.String(20), nullable=False),
        sa.Column('computed_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('user_id', 'entity_type', 'entity_id', name='uq_excluded_user_entity'),
    )
    op.create_index('idx_excluded_user_type', 'user_excluded_entities', ['user_id', 'entity_type'])

    op.create_table(
        'user_entity_stats',
        sa.Column('user_id', sa.Integer, primary_key=True),
        sa.Column('entity_type', sa.String(20), primary_key=True),
        sa.Column('visible_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )

    # ============ Per-user annotations ============
    op.create_table(
        'user_ratings',
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('entity_type', sa.String(20), primary_key=True),
        sa.Column('entity_id', ID, primary_key=True),
        sa.Column('rating', sa.Integer),
        sa.Column('favorite', sa.Boolean, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_index('idx_user_ratings_favorite', 'user_ratings', ['user_id', 'entity_type', 'favorite'])

    op.create_table(
        'watch_history',
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('scene_id', ID, primary_key=True),
        sa.Column('play_count', sa.Integer, server_default='0'),
        sa.Column('play_duration', sa.Float, server_default='0'),
        sa.Column('o_count', sa.Integer, server_default='0'),
        sa.Column('resume_time', sa.Float),
        sa.Column('last_played_at', sa.DateTime),
    )

    op.create_table(
        'image_view_history',
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('image_id', ID, primary_key=True),
        sa.Column('view_count', sa.Integer, server_default='0'),
        sa.Column('o_count', sa.Integer, server_default='0'),
        sa.Column('last_viewed_at', sa.DateTime),
    )

    op.create_table(
        'user_entity_engagement',
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('entity_type', sa.String(20), primary_key=True),
        sa.Column('entity_id', ID, primary_key=True),
        sa.Column('o_counter', sa.Integer, server_default='0'),
        sa.Column('play_count', sa.Integer, server_default='0'),
        sa.Column('last_played_at', sa.DateTime),
    )


def downgrade() -> None:
    op.drop_table('user_entity_engagement')
    op.drop_table('image_view_history')
    op.drop_table('watch_history')
    op.drop_table('user_ratings')
    op.drop_table('user_entity_stats')
    op.drop_table('user_excluded_entities')
    op.drop_table('user_hidden_entities')
    op.drop_table('user_content_restriction_entities')
    op.drop_table('user_content_restrictions')
    op.drop_table('users')
    for name in (
        'group_tags', 'studio_tags', 'performer_tags', 'gallery_tags', 'gallery_performers',
        'image_galleries', 'image_tags', 'image_performers', 'scene_galleries', 'scene_groups',
        'scene_inherited_tags', 'scene_tags', 'scene_performers',
    ):
        op.drop_table(name)
    op.drop_table('images')
    op.drop_table('galleries')
    op.drop_table('catalog_groups')
    op.drop_table('tag_parents')
    op.drop_table('tags')
    op.drop_table('performers')
    op.drop_table('scenes')
    op.drop_table('studios')
