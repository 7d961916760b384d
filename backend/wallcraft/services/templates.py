"""通义万相特效模板目录与模型选择策略"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


MODEL_I2V_TURBO = "wanx2.1-i2v-turbo"
MODEL_I2V_PLUS = "wanx2.1-i2v-plus"
MODEL_KF2V_PLUS = "wanx2.1-kf2v-plus"

RESOLUTIONS = ("480P", "720P", "1080P")
DEFAULT_RESOLUTION = "720P"


class EffectCategory(str, Enum):
    GENERAL = "general"
    SINGLE = "single"
    SINGLE_ANIMAL = "single_animal"
    DOUBLE = "double"
    KF_SINGLE = "kf_single"


class GenerationMode(str, Enum):
    """i2v = 首帧生视频, kf2v = 首尾帧生视频"""
    I2V = "i2v"
    KF2V = "kf2v"


EFFECT_CATEGORY_LABELS: Dict[EffectCategory, str] = {
    EffectCategory.GENERAL: "通用特效",
    EffectCategory.SINGLE: "单人特效",
    EffectCategory.SINGLE_ANIMAL: "单人/动物",
    EffectCategory.DOUBLE: "双人特效",
    EffectCategory.KF_SINGLE: "首尾帧特效",
}


class Template(BaseModel):
    """特效模板"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    template: str
    category: EffectCategory
    supported_models: List[str]
    input_tip: str
    type: GenerationMode = GenerationMode.I2V


TIP_ANY = "支持任意主体，建议使用主体突出、与背景有明显区分度的图片"
TIP_SINGLE = "支持单人照片，建议使用半身至全身的正面照片"
TIP_SINGLE_FULL = "支持单人照片，建议使用全身正面照片"
TIP_SINGLE_HALF = "支持单人照片，建议使用半身的正面照片"
TIP_ANIMAL_FULL = "支持单人或动物照片，建议使用全身的正面照片"
TIP_ANIMAL_NO_HANDS = "支持单人或动物照片，建议使用半身至全身的正面照片，避免露出手部"
TIP_DOUBLE = "支持双人照片，建议两人正面看向镜头或相对站立，可为半身或全身照"

_BOTH = [MODEL_I2V_PLUS, MODEL_I2V_TURBO]
_PLUS = [MODEL_I2V_PLUS]
_KF = [MODEL_KF2V_PLUS]


def _t(template: str, name: str, category: EffectCategory, models: List[str], tip: str) -> Template:
    mode = GenerationMode.KF2V if models == _KF else GenerationMode.I2V
    return Template(
        id=template,
        name=name,
        template=template,
        category=category,
        supported_models=list(models),
        input_tip=tip,
        type=mode,
    )


_G = EffectCategory.GENERAL
_S = EffectCategory.SINGLE
_SA = EffectCategory.SINGLE_ANIMAL
_D = EffectCategory.DOUBLE
_K = EffectCategory.KF_SINGLE

TEMPLATES: List[Template] = [
    # 通用特效（首帧）
    _t("squish", "解压捏捏", _G, _BOTH, TIP_ANY),
    _t("rotation", "转圈圈", _G, _BOTH, TIP_ANY),
    _t("poke", "戳戳乐", _G, _BOTH, TIP_ANY),
    _t("inflate", "气球膨胀", _G, _BOTH, TIP_ANY),
    _t("dissolve", "分子扩散", _G, _BOTH, TIP_ANY),
    _t("melt", "热浪融化", _G, _PLUS, TIP_ANY),
    _t("icecream", "冰淇淋星球", _G, _PLUS, TIP_ANY),
    # 单人特效
    _t("carousel", "时光木马", _S, _BOTH, TIP_SINGLE),
    _t("singleheart", "爱你哟", _S, _BOTH, TIP_SINGLE),
    _t("dance1", "摇摆时刻", _S, _PLUS, TIP_SINGLE),
    _t("dance2", "头号甩舞", _S, _PLUS, TIP_SINGLE_FULL),
    _t("dance3", "星摇时刻", _S, _PLUS, TIP_SINGLE_FULL),
    _t("dance4", "指感节奏", _S, _PLUS, TIP_SINGLE),
    _t("dance5", "舞动开关", _S, _PLUS, TIP_SINGLE),
    _t("mermaid", "人鱼觉醒", _S, _PLUS, TIP_SINGLE_HALF),
    _t("graduation", "学术加冕", _S, _PLUS, TIP_SINGLE),
    _t("dragon", "巨兽追袭", _S, _PLUS, TIP_SINGLE),
    _t("money", "财从天降", _S, _PLUS, TIP_SINGLE),
    _t("jellyfish", "水母之约", _S, _PLUS, TIP_SINGLE),
    _t("pupil", "瞳孔穿越", _S, _PLUS, TIP_SINGLE),
    # 单人或动物
    _t("flying", "魔法悬浮", _SA, _BOTH, TIP_ANIMAL_FULL),
    _t("rose", "赠人玫瑰", _SA, _BOTH, TIP_ANIMAL_NO_HANDS),
    _t("crystalrose", "闪亮玫瑰", _SA, _BOTH, TIP_ANIMAL_NO_HANDS),
    # 双人特效
    _t("hug", "爱的抱抱", _D, _BOTH, TIP_DOUBLE),
    _t("frenchkiss", "唇齿相依", _D, _BOTH, TIP_DOUBLE),
    _t("coupleheart", "双倍心动", _D, _BOTH, TIP_DOUBLE),
    # 首尾帧特效
    _t("hanfu-1", "唐韵翩然", _K, _KF, TIP_SINGLE),
    _t("solaron", "机甲变身", _K, _KF, TIP_SINGLE),
    _t("magazine", "闪耀封面", _K, _KF, TIP_SINGLE),
    _t("mech1", "机械觉醒", _K, _KF, TIP_SINGLE),
    _t("mech2", "赛博登场", _K, _KF, TIP_SINGLE),
]

_BY_TEMPLATE: Dict[str, Template] = {t.template: t for t in TEMPLATES}


def get_template(template: str) -> Optional[Template]:
    return _BY_TEMPLATE.get(template)


def default_model(template: Template) -> str:
    """
    根据模板类型选择默认模型

    首尾帧模板只能用 kf2v 模型；其余优先使用更快的 turbo，不支持时回退到 plus。
    """
    if template.type == GenerationMode.KF2V:
        return MODEL_KF2V_PLUS
    if MODEL_I2V_TURBO in template.supported_models:
        return MODEL_I2V_TURBO
    return MODEL_I2V_PLUS


def resolve_model(template: str, requested: Optional[str] = None) -> str:
    """确定提交时使用的模型

    目录内模板：首尾帧强制 kf2v；显式请求且模板支持的模型保留；否则取默认模型。
    目录外模板：使用请求的模型，没有则 plus。
    """
    known = get_template(template)
    if known is None:
        return requested or MODEL_I2V_PLUS
    if known.type == GenerationMode.KF2V:
        return MODEL_KF2V_PLUS
    if requested and requested in known.supported_models:
        return requested
    return default_model(known)


def normalize_resolution(resolution: Optional[str]) -> str:
    """分辨率归一化，未识别的值回退到 720P"""
    if not resolution:
        return DEFAULT_RESOLUTION
    value = resolution.strip().upper()
    return value if value in RESOLUTIONS else DEFAULT_RESOLUTION
