"""
Configuration module for the Kanban Scheduler.
Loads settings from environment variables or .env file.
Kanban Scheduler 配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Execution ---
# --- 执行参数 ---
MAX_CONCURRENT = int(os.getenv("MAX_CONCURRENT", "0")) or None   # 每个 Wave 内最大并发任务数，0 / 未设置 = 不限制
EXIT_ON_ERROR = os.getenv("EXIT_ON_ERROR", "false").lower() == "true"  # 任一任务失败后停止调度后续 Wave
DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"              # 只规划和生成报告，不真正调用 action

# --- Actions ---
# --- 任务动作 ---
ACTION_TIMEOUT = int(os.getenv("ACTION_TIMEOUT", "300"))                          # CommandAction 单任务超时时间（秒）
SIMULATED_SECONDS_PER_UNIT = float(os.getenv("SIMULATED_SECONDS_PER_UNIT", "0.1"))  # SimulatedAction 每个工作量单位的休眠秒数

# Relative effort per size class (S=1 unit). Used for time estimates,
# critical path weighting and simulated work.
# 各尺寸的相对工作量（S = 1 个单位），用于时间估算、关键路径加权和模拟执行。
SIZE_UNITS: dict[str, float] = {"S": 1.0, "M": 1.4, "L": 4.0, "XL": 8.0}

# --- Priority Engine ---
# --- 优先级推荐引擎 ---
WEIGHT_PRIORITY = float(os.getenv("WEIGHT_PRIORITY", "0.3"))        # 声明优先级权重
WEIGHT_DUE_DATE = float(os.getenv("WEIGHT_DUE_DATE", "0.3"))        # 截止日期紧迫度权重
WEIGHT_FAN_OUT = float(os.getenv("WEIGHT_FAN_OUT", "0.25"))         # 阻塞扇出（解锁下游任务数）权重
WEIGHT_IN_PROGRESS = float(os.getenv("WEIGHT_IN_PROGRESS", "0.15"))  # in_progress 状态的连续性加成
URGENCY_HALF_LIFE_HOURS = float(os.getenv("URGENCY_HALF_LIFE_HOURS", "24"))  # 紧迫度半衰期：距截止每增加该小时数，紧迫度减半

# Upper bounds (exclusive) for low / medium / high; anything above is critical.
# low / medium / high 的上界（不含），超过即为 critical。
LEVEL_THRESHOLDS: tuple[float, float, float] = (0.3, 0.55, 0.8)

# --- Reports ---
# --- 报告输出 ---
REPORT_DIR = os.path.expanduser(os.getenv("REPORT_DIR", "output/reports"))  # 执行报告默认输出目录
