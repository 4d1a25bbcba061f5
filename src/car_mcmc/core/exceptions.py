"""car-mcmcカスタム例外階層

FailFast原則に従い、構造的なエラーは即座に報告される。
事前分布の台の外にあるパラメータはエラーではなく対数密度 -inf として扱う。
"""


class CarMCMCError(Exception):
    """car-mcmcの基底例外クラス"""

    pass


class ValidationError(CarMCMCError):
    """入力バリデーションエラー"""

    pass


class InvalidInputError(ValidationError):
    """時系列入力が不正なエラー

    配列長の不一致、非有限値、負の測定誤差、
    重複除去後に異なる時刻が2点未満しか残らない場合に発生。
    """

    pass


class ParameterValidationError(ValidationError):
    """設定値が有効範囲外のエラー"""

    pass


class EstimationError(CarMCMCError):
    """推定（サンプリング）関連のエラー"""

    pass


class NotInitializedError(EstimationError):
    """サンプラー未初期化エラー

    start() を呼ぶ前に do_step() が呼ばれた場合に発生。
    """

    pass
