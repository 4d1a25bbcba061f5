"""CLIメインエントリーポイント"""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from car_mcmc import __version__
from car_mcmc.cli.commands import fit_command, simulate_command

app = typer.Typer(
    name="car-mcmc",
    help="不等間隔時系列に対するCAR(1)過程のベイズ推定",
    no_args_is_help=True,
)
console = Console()


@app.command("fit")
def fit(
    data_file: Annotated[
        Path | None,
        typer.Argument(help="観測データCSVファイル（time, value[, sigma]）"),
    ] = None,
    samples: Annotated[
        int,
        typer.Option("--samples", "-n", help="保存するMCMCドロー数"),
    ] = 10_000,
    burnin: Annotated[
        int,
        typer.Option("--burnin", help="バーンイン数"),
    ] = 5_000,
    thinning: Annotated[
        int,
        typer.Option("--thinning", help="間引き間隔"),
    ] = 1,
    target_rate: Annotated[
        float,
        typer.Option("--target-rate", help="RAMの目標採択率"),
    ] = 0.4,
    seed: Annotated[
        int | None,
        typer.Option("--seed", help="乱数シード"),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="結果出力ディレクトリ"),
    ] = None,
    synthetic: Annotated[
        bool,
        typer.Option("--synthetic", help="合成データを使用"),
    ] = False,
) -> None:
    """CAR(1)モデルのベイズ推定（Robust Adaptive Metropolis）を実行

    例:
        car-mcmc fit lightcurve.csv --samples 20000 --burnin 10000 --output results/
        car-mcmc fit --synthetic --samples 1000 --burnin 500 --seed 1
    """
    fit_command(data_file, samples, burnin, thinning, target_rate, seed, output_dir, synthetic)


@app.command("simulate")
def simulate(
    output_file: Annotated[
        Path,
        typer.Option("--output", "-o", help="出力CSVファイルパス"),
    ] = Path("data/car1_synthetic.csv"),
    n: Annotated[
        int,
        typer.Option("--n", help="観測点数"),
    ] = 200,
    tau: Annotated[
        float,
        typer.Option("--tau", help="緩和時間 1/ω"),
    ] = 10.0,
    stdev: Annotated[
        float,
        typer.Option("--stdev", help="過程の定常標準偏差"),
    ] = 1.0,
    noise: Annotated[
        float,
        typer.Option("--noise", help="測定誤差の標準偏差"),
    ] = 0.1,
    seed: Annotated[
        int | None,
        typer.Option("--seed", help="乱数シード"),
    ] = None,
) -> None:
    """合成CAR(1)データを生成してCSV出力

    例:
        car-mcmc simulate --output data/test.csv --n 500 --tau 50 --noise 0.2
    """
    simulate_command(output_file, n, tau, stdev, noise, seed)


@app.command("version")
def version() -> None:
    """バージョン情報を表示"""
    console.print(f"car-mcmc version {__version__}")


if __name__ == "__main__":
    app()
