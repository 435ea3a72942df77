from .feishu import register_feishu_commands
