"""
Boundary conditions and flow physics for the pore flow case.

Maps the tagged patches to boundary condition kinds and writes the complete
OpenFOAM case configuration (0/, constant/, system/) in one call.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Tuple

from .constants import DEFAULT_CONSTANTS, INLET, OUTLET, PORE_WALL, BLOCK_SURFACE
from .errors import ConfigurationError
from .geometry import Domain
from .openfoam.foam_io import write_foam_file

logger = logging.getLogger(__name__)

# Function object names, threaded to the solver through CaseSetup.reports
REPORT_INLET_FLUX = "inletFlux"
REPORT_OUTLET_FLUX = "outletFlux"
REPORT_IN_PLANE = "inPlanePressure"
REPORT_OUT_PLANE = "outPlanePressure"
REPORT_IN_AREA_PLANE = "inAreaPlane"
REPORT_WALL_AREA = "poreWallArea"
REPORT_BLOCK_AREA = "blockSurfaceArea"


@dataclass(frozen=True)
class BoundaryCondition:
    patch: str
    kind: str           # totalPressure / fixedPressure / noSlipWall
    p_type: str
    u_type: str


@dataclass(frozen=True)
class CaseSetup:
    """Everything the solver adapter needs to know about a configured case"""
    case_dir: Path
    boundaries: Tuple[BoundaryCondition, ...]
    rho: float
    mu: float
    nu: float
    p0_kinematic: float
    outlet_p_kinematic: float
    half_length: float
    plane_x: Dict[str, float] = field(default_factory=dict)
    reports: Dict[str, str] = field(default_factory=dict)


def boundary_conditions() -> Tuple[BoundaryCondition, ...]:
    """Patch -> condition mapping for pressure-driven flow"""
    return (
        BoundaryCondition(INLET, "totalPressure", "totalPressure", "pressureInletOutletVelocity"),
        BoundaryCondition(OUTLET, "fixedPressure", "fixedValue", "inletOutlet"),
        BoundaryCondition(PORE_WALL, "noSlipWall", "zeroGradient", "noSlip"),
        BoundaryCondition(BLOCK_SURFACE, "noSlipWall", "zeroGradient", "noSlip"),
    )


def read_mesh_patches(case_dir: Path) -> Tuple[str, ...]:
    """Patch names from constant/polyMesh/boundary (empty if no mesh yet)"""
    boundary_file = Path(case_dir) / "constant" / "polyMesh" / "boundary"
    if not boundary_file.exists():
        return ()
    names = []
    text = boundary_file.read_text()
    body = text[text.find("("):] if "(" in text else ""
    depth = 0
    token = ""
    for char in body:
        if char == "{":
            if depth == 0 and token.strip():
                names.append(token.split()[-1])
            depth += 1
            token = ""
        elif char == "}":
            depth -= 1
            token = ""
        elif depth == 0:
            token += char
    return tuple(names)


class PhysicsConfigurator:
    """Writes the steady laminar incompressible case for one sample"""

    def __init__(self, config_manager):
        self.config = config_manager.config
        self.physics = self.config["physics"]
        self.solver = self.config["solver"]
        self.metrics = self.config["metrics"]

    def configure(self, domain: Domain, case_dir: Path) -> CaseSetup:
        """
        Validate the boundaries and flow model, then write all case files

        Raises:
            ConfigurationError: a tagged boundary is missing or the flow model is not supported
        """
        case_dir = Path(case_dir)
        flow_model = self.physics["flow_model"]
        if flow_model not in DEFAULT_CONSTANTS['physics'].SUPPORTED_FLOW_MODELS:
            raise ConfigurationError(f"Unsupported flow model: {flow_model}")

        self._check_patches(domain, case_dir)

        rho = float(self.physics["rho"])
        mu = float(self.physics["mu"])
        H = domain.half_length
        offset = self.metrics["in_area_offset"]
        plane_offset = self.metrics["pressure_plane_offset"]

        setup = CaseSetup(
            case_dir=case_dir,
            boundaries=boundary_conditions(),
            rho=rho,
            mu=mu,
            nu=mu / rho,
            p0_kinematic=float(self.physics["inlet_total_pressure"]) / rho,
            outlet_p_kinematic=float(self.physics["outlet_pressure"]) / rho,
            half_length=H,
            plane_x={
                REPORT_IN_PLANE: -plane_offset * H,
                REPORT_OUT_PLANE: plane_offset * H,
                REPORT_IN_AREA_PLANE: -offset * H,
            },
            reports={
                "inlet_flux": REPORT_INLET_FLUX,
                "outlet_flux": REPORT_OUTLET_FLUX,
                "in_plane": REPORT_IN_PLANE,
                "out_plane": REPORT_OUT_PLANE,
                "in_area_plane": REPORT_IN_AREA_PLANE,
                "wall_area": REPORT_WALL_AREA,
                "block_area": REPORT_BLOCK_AREA,
            },
        )

        self._write_fields(setup)
        self._write_constant(setup)
        self._write_system(setup)

        logger.info(f"✅ Case configured: {flow_model}, rho={rho}, mu={mu}, "
                    f"p0={self.physics['inlet_total_pressure']} Pa")
        logger.debug(f"Boundary conditions: {describe(setup.boundaries)}")
        return setup

    def _check_patches(self, domain: Domain, case_dir: Path) -> None:
        for name in (INLET, OUTLET):
            if name not in domain.patches or len(domain.patches[name]) == 0:
                raise ConfigurationError(f"Boundary '{name}' is not tagged on the domain")

        mesh_patches = read_mesh_patches(case_dir)
        if mesh_patches:
            missing = [p for p in (INLET, OUTLET) if p not in mesh_patches]
            if missing:
                raise ConfigurationError(f"Mesh has no patch {', '.join(missing)} "
                                         f"(found {', '.join(mesh_patches)})")

    def _patch_entries(self, setup: CaseSetup, field_name: str) -> str:
        entries = []
        for bc in setup.boundaries:
            if field_name == "p":
                lines = [f"type            {bc.p_type};"]
                if bc.p_type == "totalPressure":
                    lines += [f"p0              uniform {setup.p0_kinematic:.9g};",
                              f"value           uniform {setup.p0_kinematic:.9g};"]
                elif bc.p_type == "fixedValue":
                    lines += [f"value           uniform {setup.outlet_p_kinematic:.9g};"]
            else:
                lines = [f"type            {bc.u_type};"]
                if bc.u_type == "inletOutlet":
                    lines += ["inletValue      uniform (0 0 0);", "value           uniform (0 0 0);"]
                elif bc.u_type == "pressureInletOutletVelocity":
                    lines += ["value           uniform (0 0 0);"]
            body = "\n".join(f"        {line}" for line in lines)
            entries.append(f"    {bc.patch}\n    {{\n{body}\n    }}")
        # Any background patch left by blockMesh
        entries.append(f"    \".*\"\n    {{\n        type            "
                       f"{'zeroGradient' if field_name == 'p' else 'noSlip'};\n    }}")
        return "\n\n".join(entries)

    def _write_fields(self, setup: CaseSetup) -> None:
        zero_dir = setup.case_dir / "0"
        write_foam_file(zero_dir / "U", "volVectorField", f"""dimensions      [0 1 -1 0 0 0 0];

internalField   uniform (0 0 0);

boundaryField
{{
{self._patch_entries(setup, "U")}
}}
""", location="0")
        write_foam_file(zero_dir / "p", "volScalarField", f"""dimensions      [0 2 -2 0 0 0 0];

internalField   uniform 0;

boundaryField
{{
{self._patch_entries(setup, "p")}
}}
""", location="0")

    def _write_constant(self, setup: CaseSetup) -> None:
        constant = setup.case_dir / "constant"
        write_foam_file(constant / "physicalProperties", "dictionary", f"""viscosityModel  constant;

nu              [0 2 -1 0 0 0 0] {setup.nu:.9g};
rho             [1 -3 0 0 0 0 0] {setup.rho:.9g};
""", location="constant")
        write_foam_file(constant / "momentumTransport", "dictionary", """simulationType  laminar;
""", location="constant")

    def _function_objects(self, setup: CaseSetup) -> str:
        def patch_report(name, patch, operation, fields):
            return f"""    {name}
    {{
        type            surfaceFieldValue;
        libs            ("libfieldFunctionObjects.so");
        writeControl    timeStep;
        writeInterval   1;
        log             false;
        writeFields     false;
        select          patch;
        patch           {patch};
        operation       {operation};
        fields          ({fields});
        writeArea       yes;
    }}"""

        def plane_report(name, x):
            return f"""    {name}
    {{
        type            surfaceFieldValue;
        libs            ("libfieldFunctionObjects.so");
        writeControl    timeStep;
        writeInterval   1;
        log             false;
        writeFields     false;
        select          sampledSurface;
        sampledSurfaceDict
        {{
            type        cuttingPlane;
            planeType   pointAndNormal;
            point       ({x:.9g} 0 0);
            normal      (1 0 0);
            interpolate false;
        }}
        operation       areaAverage;
        fields          (p);
        writeArea       yes;
    }}"""

        reports = [
            patch_report(REPORT_INLET_FLUX, INLET, "sum", "phi"),
            patch_report(REPORT_OUTLET_FLUX, OUTLET, "sum", "phi"),
            patch_report(REPORT_WALL_AREA, PORE_WALL, "areaAverage", "p"),
            patch_report(REPORT_BLOCK_AREA, BLOCK_SURFACE, "areaAverage", "p"),
        ]
        reports += [plane_report(name, x) for name, x in setup.plane_x.items()]
        return "\n\n".join(reports)

    def _write_system(self, setup: CaseSetup) -> None:
        S = self.solver
        system = setup.case_dir / "system"
        tol = S["convergence_criteria"]
        relax = S["relaxation_factors"]

        write_foam_file(system / "controlDict", "dictionary", f"""application     {S["application"]};
startFrom       startTime;
startTime       0;
stopAt          endTime;
endTime         {S["max_iterations"]};
deltaT          1;
writeControl    timeStep;
writeInterval   {S["max_iterations"]};
purgeWrite      1;
writeFormat     ascii;
writePrecision  10;
writeCompression off;
timeFormat      general;
timePrecision   6;
runTimeModifiable true;

functions
{{
{self._function_objects(setup)}
}}
""", location="system")

        write_foam_file(system / "fvSolution", "dictionary", f"""solvers
{{
    p
    {{
        solver          GAMG;
        tolerance       {tol};
        relTol          0.01;
        smoother        GaussSeidel;
    }}

    U
    {{
        solver          smoothSolver;
        smoother        symGaussSeidel;
        tolerance       {tol};
        relTol          0.1;
    }}
}}

SIMPLE
{{
    nNonOrthogonalCorrectors {S["n_non_ortho_correctors"]};
    consistent      yes;

    residualControl
    {{
        p               {tol};
        U               {tol};
    }}
}}

relaxationFactors
{{
    equations
    {{
        U               {relax["U"]};
        ".*"            {relax["p"]};
    }}
}}
""", location="system")

        write_foam_file(system / "fvSchemes", "dictionary", """ddtSchemes
{
    default         steadyState;
}

gradSchemes
{
    default         Gauss linear;
}

divSchemes
{
    default         none;
    div(phi,U)      bounded Gauss linearUpwind grad(U);
    div((nuEff*dev2(T(grad(U))))) Gauss linear;
}

laplacianSchemes
{
    default         Gauss linear corrected;
}

interpolationSchemes
{
    default         linear;
}

snGradSchemes
{
    default         corrected;
}
""", location="system")


def describe(boundaries: Iterable[BoundaryCondition]) -> Dict[str, str]:
    """Patch -> condition kind, for logs and tests"""
    return {bc.patch: bc.kind for bc in boundaries}
