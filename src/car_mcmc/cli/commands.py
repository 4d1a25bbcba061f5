"""CLIコマンド実装"""

from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import TypeVar

import numpy as np
import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from car_mcmc.core.exceptions import CarMCMCError, EstimationError, ValidationError
from car_mcmc.core.time_series import TimeSeries
from car_mcmc.estimation.data_loader import DataLoader
from car_mcmc.estimation.mcmc import SamplerConfig, run_sampler
from car_mcmc.estimation.posterior import PosteriorModel
from car_mcmc.estimation.residuals import assess_fit
from car_mcmc.estimation.results import build_estimation_result
from car_mcmc.estimation.state_space import CAR1Parameters
from car_mcmc.estimation.synthetic import SyntheticCAR1Generator

console = Console()

# 事前分布の定常標準偏差の上限 = 係数 × データの標準偏差
MAX_STDEV_FACTOR = 10.0

F = TypeVar("F", bound=Callable[..., None])


def handle_car_mcmc_error(func: F) -> F:
    """CLI用エラーハンドリングデコレータ

    car-mcmcの例外を捕捉し、ユーザーフレンドリーなエラーメッセージを表示する。
    """

    @wraps(func)
    def wrapper(*args: object, **kwargs: object) -> None:
        try:
            func(*args, **kwargs)
        except ValidationError as e:
            console.print(f"[red]入力エラー: {e}[/red]")
            raise typer.Exit(1) from e
        except EstimationError as e:
            console.print(f"[red]推定エラー: {e}[/red]")
            raise typer.Exit(2) from e
        except CarMCMCError as e:
            console.print(f"[red]エラー: {e}[/red]")
            raise typer.Exit(3) from e

    return wrapper  # type: ignore[return-value]


def _synthetic_series(n: int, tau: float, stdev: float, noise: float, seed: int | None) -> TimeSeries:
    """CLI用の合成時系列を生成する（観測期間は緩和時間の20倍）"""
    rng = np.random.default_rng(seed)
    omega = 1.0 / tau
    params = CAR1Parameters(sigma=stdev * np.sqrt(2.0 * omega), measerr_scale=1.0, omega=omega)
    gen = SyntheticCAR1Generator()
    time = gen.random_times(n, 20.0 * tau, rng)
    return gen.generate(params, time, measurement_sigma=noise, rng=rng)


@handle_car_mcmc_error
def fit_command(
    data_file: Path | None,
    samples: int,
    burnin: int,
    thinning: int,
    target_rate: float,
    seed: int | None,
    output_dir: Path | None,
    synthetic: bool,
) -> None:
    """CAR(1)モデルのベイズ推定（RAM MCMC）を実行"""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("データを読み込み中...", total=None)

        if synthetic:
            ts = _synthetic_series(n=200, tau=10.0, stdev=1.0, noise=0.1, seed=42)
            console.print(f"[cyan]合成データを生成: {ts.n}点[/cyan]")
        elif data_file is not None:
            ts = DataLoader().load_csv(data_file)
            console.print(f"[cyan]データ読み込み完了: {data_file} ({ts.n}点)[/cyan]")
        else:
            console.print("[red]データファイルまたは --synthetic を指定してください[/red]")
            raise typer.Exit(1)

        progress.update(task, description="事後分布を構築中...")

        posterior = PosteriorModel.from_time_series(ts)
        data_stdev = float(np.std(ts.value))
        if data_stdev <= 0.0:
            raise ValidationError("観測値の分散が0のため事前分布を設定できません")
        posterior.set_prior(MAX_STDEV_FACTOR * data_stdev)

        cfg = SamplerConfig(
            n_samples=samples,
            n_burnin=burnin,
            thinning=thinning,
            target_rate=target_rate,
            seed=seed,
        )

        progress.update(task, description="MCMC推定を実行中...")
        console.print(
            f"[cyan]MCMC設定: samples={samples}, burnin={burnin}, thinning={thinning}, "
            f"target_rate={target_rate}[/cyan]"
        )

        sampler_result = run_sampler(posterior, cfg, bounds=posterior.bounds())

        progress.update(task, description="結果を集計中...")

        result = build_estimation_result(sampler_result, posterior)
        theta_mean = result.posterior_mean()
        filter_result = posterior.kalman_filter(theta_mean)
        fit = assess_fit(ts, filter_result, measerr_scale=float(theta_mean[1]))

    console.print()
    console.print(
        Panel(
            f"[bold]ベイズ推定結果[/bold]\n"
            f"観測点数: {ts.n}\n"
            f"ドロー数: {result.n_samples}\n"
            f"採択率: {result.acceptance_rate:.3f}\n"
            f"DIC: {result.dic:.2f} (p_D = {result.effective_parameters:.2f})\n"
            f"残差Ljung-Box p値: {fit.ljung_box_p:.3f}",
            title="CAR(1) Estimation",
        )
    )

    table = Table(title="事後分布サマリー")
    table.add_column("パラメータ", style="cyan")
    table.add_column("事後平均", style="green")
    table.add_column("事後中央値", style="green")
    table.add_column("事後標準偏差", style="yellow")
    table.add_column("90% HPD", style="yellow")
    for s in result.summaries:
        table.add_row(
            s.name,
            f"{s.mean:.4g}",
            f"{s.median:.4g}",
            f"{s.std:.4g}",
            f"[{s.hpd_lower:.4g}, {s.hpd_upper:.4g}]",
        )
    console.print(table)

    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)
        np.save(output_dir / "samples.npy", result.posterior_samples)
        if result.mode is not None:
            np.save(output_dir / "mode.npy", result.mode)
        summary_path = output_dir / "summary.txt"
        summary_path.write_text(result.summary_table(), encoding="utf-8")
        console.print(f"\n[green]結果を保存しました: {output_dir}[/green]")


@handle_car_mcmc_error
def simulate_command(
    output_file: Path,
    n: int,
    tau: float,
    stdev: float,
    noise: float,
    seed: int | None,
) -> None:
    """合成CAR(1)データを生成してCSV出力"""
    if tau <= 0.0 or stdev <= 0.0:
        raise ValidationError(f"tauとstdevは正が必要 (got tau={tau}, stdev={stdev})")
    if noise < 0.0:
        raise ValidationError(f"noiseは非負が必要 (got {noise})")

    ts = _synthetic_series(n=n, tau=tau, stdev=stdev, noise=noise, seed=seed)

    output_file.parent.mkdir(parents=True, exist_ok=True)
    SyntheticCAR1Generator().to_csv(ts, output_file)

    console.print(f"[green]データを保存しました: {output_file}[/green]")
    console.print(f"観測点数: {ts.n}")
    console.print(f"緩和時間: {tau}, 定常標準偏差: {stdev}, 測定誤差: {noise}")
